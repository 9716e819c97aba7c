"""StateCollector - read the live cluster state from the resource manager.

Every failure mode (tool missing, timeout, this host not a member, output that
is not a CIB) is folded into a CollectionFailure. The collector never hands
back a partially populated snapshot.
"""

from __future__ import annotations

import logging
import subprocess
from typing import Optional, Sequence

from anvil_cluster.cluster.cib import parse_cib
from anvil_cluster.config.node_identity import NodeIdentity
from anvil_cluster.errors import CollectionFailure, CollectionReason
from anvil_cluster.models import ClusterSnapshot
from anvil_cluster.utils.exceptions import PARSE_ERRORS

logger = logging.getLogger(__name__)

DEFAULT_CIB_COMMAND = ("pcs", "cluster", "cib")


class StateCollector:
    """Runs the CIB query and parses it into a ClusterSnapshot. Read-only."""

    def __init__(
        self,
        command: Sequence[str] = DEFAULT_CIB_COMMAND,
        timeout: float = 30.0,
    ):
        self.command = list(command)
        self.timeout = timeout

    def _query(self) -> str:
        try:
            result = subprocess.run(
                self.command,
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except FileNotFoundError as e:
            raise CollectionFailure(CollectionReason.NOT_INSTALLED, str(e)) from e
        except subprocess.TimeoutExpired as e:
            raise CollectionFailure(
                CollectionReason.TIMEOUT, f"{' '.join(self.command)} after {self.timeout}s"
            ) from e
        except OSError as e:
            raise CollectionFailure(CollectionReason.NOT_INSTALLED, str(e)) from e

        if result.returncode != 0:
            # pcs exits non-zero when the cluster stack is not running here
            detail = (result.stderr or result.stdout or "").strip()
            raise CollectionFailure(
                CollectionReason.NOT_MEMBER,
                f"exit {result.returncode}: {detail[:500]}",
            )
        return result.stdout

    def collect(
        self, identity: NodeIdentity
    ) -> tuple[Optional[ClusterSnapshot], Optional[CollectionFailure]]:
        """Collect the current snapshot for the identity's pair.

        Returns:
            (snapshot, None) on success, (None, failure) otherwise
        """
        try:
            xml_text = self._query()
            snapshot = parse_cib(xml_text, identity.pair_id, identity.host_id_for)
        except CollectionFailure as failure:
            logger.info(f"[StateCollector] Collection failed: {failure}")
            return None, failure
        except PARSE_ERRORS as e:
            failure = CollectionFailure(CollectionReason.PARSE_ERROR, str(e))
            logger.warning(f"[StateCollector] Unparseable CIB: {e}")
            return None, failure

        if identity.host_id not in snapshot.nodes:
            # A CIB that doesn't list us means we are not part of this cluster
            failure = CollectionFailure(
                CollectionReason.NOT_MEMBER,
                f"{identity.node_name} is not a node of cluster '{snapshot.cluster_name}'",
            )
            logger.info(f"[StateCollector] {failure}")
            return None, failure

        logger.debug(
            f"[StateCollector] Collected '{snapshot.cluster_name}' "
            f"with {len(snapshot.nodes)} node(s)"
        )
        return snapshot, None
