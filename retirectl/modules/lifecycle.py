"""Per-node retirement lifecycle.

Each node walks the same fixed sequence::

    DRAINING -> AWAITING_VOLUME_DETACH -> REBOOTING -> AWAITING_READY -> UNLABELING

REBOOTING waits for the agent to go down before waiting for it to come
back, so the readiness gate never sees the pre-reboot kubelet.

The only branch is inside DRAINING: a drain that times out or fails falls
back to force-deleting the node's pods, and the node carries on. The waits
after it never give up unless a deadline is configured.
"""
import logging
import time
from typing import Callable

from .models import LifecycleReport, LifecycleState, Node
from .retry import RetryExecutor
from .waits import await_agent_active, await_agent_down, await_ready, await_volume_detach

logger = logging.getLogger("lifecycle")


class NodeLifecycle:
    """Drive one node at a time through drain, reboot and re-admission."""

    def __init__(self, cluster, remote_factory: Callable[[Node], object], retry: RetryExecutor,
                 settings, sleep: Callable[[float], None] = time.sleep):
        """
        Args:
            cluster: ClusterClient (or anything with the same methods)
            remote_factory: Returns a RemoteHost for a node
            retry: Executor wrapping every call that must eventually succeed
            settings: RetireConfig supplying the drain timeout, agent service
                and polling intervals
            sleep: Blocking sleep used by the waits
        """
        self.cluster = cluster
        self.remote_factory = remote_factory
        self.retry = retry
        self.settings = settings
        self.sleep = sleep

    def run(self, node: Node) -> LifecycleReport:
        report = LifecycleReport(node=node.name)
        logger.info(f"🔄 [{node.name}] Starting retirement cycle (role={node.role}, batch={node.batch_id})")

        self.drain(node, report)
        self.await_volume_detach(node, report)
        self.reboot(node, report)
        self.await_ready(node, report)
        self.unlabel(node, report)

        report.finish()
        logger.info(f"✅ [{node.name}] Retirement cycle complete in {report.duration:.0f}s")
        return report

    def drain(self, node: Node, report: LifecycleReport) -> None:
        report.enter(LifecycleState.DRAINING)
        timeout = self.settings.drain_timeout
        logger.info(f"[{node.name}] Draining (timeout {timeout:g}s)")

        self.retry.call(self.cluster.cordon, node, description=f"cordon {node.name}")
        result = self.cluster.drain(node, timeout)
        report.drain = result

        if result.ok:
            logger.info(f"[{node.name}] Drained")
            return

        code = f" (code {result.code})" if result.code is not None else ""
        logger.warning(
            f"⚠️  [{node.name}] Drain {result.outcome.value}{code}: {result.message}. "
            f"Force deleting remaining pods"
        )
        report.forced_pod_deletes = self.retry.call(
            self.cluster.force_delete_pods, node, description=f"force delete pods on {node.name}"
        )
        logger.info(f"[{node.name}] Force deleted {report.forced_pod_deletes} pod(s)")

    def await_volume_detach(self, node: Node, report: LifecycleReport) -> None:
        report.enter(LifecycleState.AWAITING_VOLUME_DETACH)
        polling = self.settings.polling
        logger.info(f"[{node.name}] Waiting for volume attachments to be released")
        await_volume_detach(self.cluster, node, polling.detach_interval, polling.detach_timeout, self.sleep)
        logger.info(f"[{node.name}] No volumes attached")

    def reboot(self, node: Node, report: LifecycleReport) -> None:
        report.enter(LifecycleState.REBOOTING)
        polling = self.settings.polling
        service = self.settings.agent_service
        remote = self.remote_factory(node)

        logger.info(f"[{node.name}] Rebooting via {node.address}")
        remote.reboot()

        logger.info(f"[{node.name}] Waiting for {service} to go down")
        await_agent_down(remote, service, polling.agent_interval, polling.agent_timeout, self.sleep)
        logger.info(f"[{node.name}] Waiting for {service} to become active")
        await_agent_active(remote, service, polling.agent_interval, polling.agent_timeout, self.sleep)
        logger.info(f"[{node.name}] {service} is active")

    def await_ready(self, node: Node, report: LifecycleReport) -> None:
        report.enter(LifecycleState.AWAITING_READY)
        polling = self.settings.polling
        logger.info(f"[{node.name}] Waiting for node to report Ready")
        await_ready(self.cluster, node, polling.ready_interval, polling.ready_timeout, self.sleep)

        self.retry.call(self.cluster.uncordon, node, description=f"uncordon {node.name}")
        logger.info(f"[{node.name}] Ready and uncordoned")

    def unlabel(self, node: Node, report: LifecycleReport) -> None:
        report.enter(LifecycleState.UNLABELING)
        self.retry.call(
            self.cluster.clear_retirement_label, node, description=f"clear retirement label on {node.name}"
        )
        logger.info(f"[{node.name}] Retirement label removed")
