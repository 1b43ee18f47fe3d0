"""Batch selection, labeling and sequencing for rolling node retirement."""
import logging
import time
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from .lifecycle import NodeLifecycle
from .models import BATCH_ID_FORMAT, Node, RetirementBatch
from .retry import RetryExecutor

logger = logging.getLogger("batch")


def mint_batch_id(now: Optional[datetime] = None) -> str:
    """Batch id for a fresh run: UTC timestamp at second resolution."""
    now = now or datetime.now(timezone.utc)
    return now.astimezone(timezone.utc).strftime(BATCH_ID_FORMAT)


class BatchOrchestrator:
    """Select a role's nodes, stamp them with a batch id and cycle them one by one."""

    def __init__(self, cluster, lifecycle: NodeLifecycle, retry: RetryExecutor, settings,
                 sleep: Callable[[float], None] = time.sleep):
        self.cluster = cluster
        self.lifecycle = lifecycle
        self.retry = retry
        self.settings = settings
        self.sleep = sleep
        # Batch a later --resume can pick up; None until a node carries the label.
        self.resumable_batch_id: Optional[str] = None

    @property
    def role(self) -> str:
        return self.settings.role

    def _list(self, batch_id: Optional[str] = None) -> List[Node]:
        selector = self.cluster.selector(self.role, batch_id)
        return self.retry.call(
            self.cluster.list_nodes, self.role, batch_id, description=f"list nodes ({selector})"
        )

    def _wait_for_nodes(self, batch_id: Optional[str] = None) -> List[Node]:
        """List nodes, re-querying while the result is empty.

        An empty answer is taken to mean the control plane has not caught up
        yet, so this never gives up.
        """
        interval = self.settings.polling.selection_interval
        attempts = 0
        while True:
            nodes = self._list(batch_id)
            if nodes:
                return nodes
            attempts += 1
            if attempts == 1 or attempts % 60 == 0:
                logger.info(
                    f"⏳ No nodes match {self.cluster.selector(self.role, batch_id)} yet, "
                    f"re-querying every {interval:g}s"
                )
            self.sleep(interval)

    def plan(self) -> List[Node]:
        """Nodes a fresh run would retire, without touching them."""
        return self._list()

    def label(self, nodes: List[Node], batch_id: str) -> None:
        for node in nodes:
            self.retry.call(
                self.cluster.label_for_retirement, node, batch_id,
                description=f"label {node.name} {self.settings.batch_label}={batch_id}"
            )
            self.resumable_batch_id = batch_id
            logger.info(f"🏷️  [{node.name}] Marked for retirement in batch {batch_id}")

    def run_fresh(self, batch_id: Optional[str] = None) -> RetirementBatch:
        batch_id = batch_id or mint_batch_id()
        self.resumable_batch_id = None
        logger.info(f"🚀 Starting retirement batch {batch_id} for role={self.role}")

        candidates = self._wait_for_nodes()
        logger.info(f"Found {len(candidates)} node(s) with role={self.role}")
        self.label(candidates, batch_id)

        nodes = self._wait_for_nodes(batch_id)
        return self._cycle(nodes, batch_id, resumed=False)

    def run_resume(self, batch_id: str) -> RetirementBatch:
        self.resumable_batch_id = batch_id
        logger.info(f"🔁 Resuming retirement batch {batch_id} for role={self.role}")
        nodes = self._list(batch_id)
        if not nodes:
            logger.info(f"No nodes left in batch {batch_id}; nothing to do")
        return self._cycle(nodes, batch_id, resumed=True)

    def _cycle(self, nodes: List[Node], batch_id: str, resumed: bool) -> RetirementBatch:
        batch = RetirementBatch(
            batch_id=batch_id,
            role=self.role,
            context=self.settings.context,
            nodes=[n.name for n in nodes],
            resumed=resumed,
        )
        for index, node in enumerate(nodes, 1):
            logger.info(f"[{index}/{len(nodes)}] {node.name}")
            batch.reports.append(self.lifecycle.run(node))
        return batch

    def in_flight(self) -> Dict[str, List[str]]:
        """Batch id -> names of nodes still carrying it, for this role."""
        batches: Dict[str, List[str]] = {}
        nodes = self.retry.call(
            self.cluster.list_retiring_nodes, self.role, description=f"list retiring nodes (role={self.role})"
        )
        for node in nodes:
            batches.setdefault(node.batch_id, []).append(node.name)
        return batches
