"""Shared helpers for the scan agent."""
