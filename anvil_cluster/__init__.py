"""Anvil! cluster scan agent.

Observes the resource manager's live cluster state on one node of an HA pair,
persists meaningful changes, raises deduplicated alerts, and keeps exactly one
peer marked as preferred for fence delay.
"""

__version__ = "0.4.0"
