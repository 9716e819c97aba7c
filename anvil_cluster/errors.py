"""Error taxonomy for the scan agent.

Startup failures stop the process before any cluster logic runs. Collection
failures are expected: they drive the membership-loss branch. Persistence
failures abort the current pass with the store left as it was. Inconsistent
peer data is logged and skipped.
"""

from __future__ import annotations

from enum import Enum


class AnvilClusterError(Exception):
    """Base class for all scan agent errors."""


class StartupFailure(AnvilClusterError):
    """Privilege, configuration or persistence checks failed before a pass."""


class IdentityError(StartupFailure):
    """Raised when the local host cannot be placed in a configured pair.

    Running with an unknown identity could make this node assert fence-delay
    preference for the wrong host, so resolution fails fast instead.
    """


class CollectionReason(str, Enum):
    """Why the resource manager could not be queried."""

    NOT_INSTALLED = "not_installed"
    NOT_MEMBER = "not_member"
    TIMEOUT = "timeout"
    PARSE_ERROR = "parse_error"


class CollectionFailure(AnvilClusterError):
    """The resource-manager query did not yield a snapshot.

    This is both the exception raised inside the collector and the value
    handed to the Reconciler; it is the only signal used to decide that this
    host is not currently a cluster member.
    """

    def __init__(self, reason: CollectionReason, detail: str = ""):
        self.reason = reason
        self.detail = detail
        super().__init__(f"{reason.value}: {detail}" if detail else reason.value)


class PersistenceFailure(AnvilClusterError):
    """A read or write against the persistence store failed."""


class InconsistentPeerData(AnvilClusterError):
    """Peer data that cannot be mapped onto the data model (e.g. no host id)."""


class CensusFailure(AnvilClusterError):
    """The workload registry could not produce a census this pass."""
