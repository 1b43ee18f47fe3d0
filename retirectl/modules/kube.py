"""Kubernetes control-plane operations used while retiring nodes."""
import logging
import os
import tempfile
import time
from pathlib import Path
from typing import Callable, Dict, List, Optional, Set

from kubernetes import client, config
from kubernetes.client.rest import ApiException
from urllib3.exceptions import HTTPError

from .models import DrainResult, Node, ReadinessState

logger = logging.getLogger("kube")

DEFAULT_ROLE_LABEL = "role"
DEFAULT_BATCH_LABEL = "retiring"


def load_kubeconfig(context: str, path: str = None, proxy: str = None) -> client.ApiClient:
    """
    Load the kubeconfig for ``context`` and return an API client bound to it.

    KUBECONFIG_CONTENT takes precedence over ``path``; with neither set the
    kubernetes client falls back to $KUBECONFIG / ~/.kube/config.
    """
    configuration = client.Configuration()

    if "KUBECONFIG_CONTENT" in os.environ:
        temp_path = os.path.join(tempfile.gettempdir(), "retirectl-kubeconfig.yaml")
        with open(temp_path, "w") as f:
            f.write(os.environ["KUBECONFIG_CONTENT"])
        path = temp_path
    elif path:
        resolved = Path(os.path.expanduser(path)).resolve()
        if not resolved.exists():
            raise FileNotFoundError(f"❌ Kubeconfig not found: {resolved}")
        path = str(resolved)

    config.load_kube_config(config_file=path, context=context, client_configuration=configuration)

    if proxy:
        logger.debug(f"Routing control-plane calls through proxy {proxy}")
        configuration.proxy = proxy

    return client.ApiClient(configuration=configuration)


def _is_daemonset_pod(pod: client.V1Pod) -> bool:
    owners = (pod.metadata and pod.metadata.owner_references) or []
    return any(owner.kind == "DaemonSet" for owner in owners)


def _is_mirror_pod(pod: client.V1Pod) -> bool:
    annotations = (pod.metadata and pod.metadata.annotations) or {}
    return "kubernetes.io/config.mirror" in annotations


def _pod_key(pod: client.V1Pod) -> str:
    return f"{pod.metadata.namespace}/{pod.metadata.name}"


class ClusterClient:
    """Thin wrapper over the CoreV1 and StorageV1 APIs.

    Nothing here retries; callers wrap mutating calls in a RetryExecutor.
    """

    def __init__(
        self,
        core_v1: client.CoreV1Api,
        storage_v1: client.StorageV1Api,
        role_label: str = DEFAULT_ROLE_LABEL,
        batch_label: str = DEFAULT_BATCH_LABEL,
        drain_poll_interval: float = 5,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.core_v1 = core_v1
        self.storage_v1 = storage_v1
        self.role_label = role_label
        self.batch_label = batch_label
        self.drain_poll_interval = drain_poll_interval
        self.sleep = sleep
        self.clock = clock

    @classmethod
    def connect(cls, context: str, proxy: str = None, kubeconfig: str = None, **kwargs) -> "ClusterClient":
        api_client = load_kubeconfig(context, kubeconfig, proxy)
        return cls(client.CoreV1Api(api_client), client.StorageV1Api(api_client), **kwargs)

    # Selection

    def selector(self, role: str, batch_id: Optional[str] = None) -> str:
        selector = f"{self.role_label}={role}"
        if batch_id:
            selector += f",{self.batch_label}={batch_id}"
        return selector

    def list_nodes(self, role: str, batch_id: Optional[str] = None) -> List[Node]:
        """Nodes carrying ``role`` (and ``batch_id`` if given), in API order."""
        selector = self.selector(role, batch_id)
        nodes = self.core_v1.list_node(label_selector=selector).items
        logger.debug(f"Selector {selector} matched {len(nodes)} node(s)")
        return [self._to_node(n) for n in nodes]

    def list_retiring_nodes(self, role: str) -> List[Node]:
        """Nodes carrying ``role`` and any retirement batch label."""
        selector = f"{self.role_label}={role},{self.batch_label}"
        return [self._to_node(n) for n in self.core_v1.list_node(label_selector=selector).items]

    def _to_node(self, v1_node: client.V1Node) -> Node:
        labels = v1_node.metadata.labels or {}
        addresses = (v1_node.status and v1_node.status.addresses) or []
        by_type: Dict[str, str] = {a.type: a.address for a in addresses}
        return Node(
            name=v1_node.metadata.name,
            address=by_type.get("InternalIP") or by_type.get("Hostname") or v1_node.metadata.name,
            role=labels.get(self.role_label, ""),
            batch_id=labels.get(self.batch_label),
            readiness=self.condense_status(v1_node),
        )

    # Labels

    def label_for_retirement(self, node: Node, batch_id: str) -> None:
        self.core_v1.patch_node(node.name, {"metadata": {"labels": {self.batch_label: batch_id}}})
        node.batch_id = batch_id

    def clear_retirement_label(self, node: Node) -> None:
        # A null value removes the key; patching an absent key is a no-op.
        self.core_v1.patch_node(node.name, {"metadata": {"labels": {self.batch_label: None}}})
        node.batch_id = None

    # Scheduling

    def cordon(self, node: Node) -> None:
        self.core_v1.patch_node(node.name, {"spec": {"unschedulable": True}})

    def uncordon(self, node: Node) -> None:
        self.core_v1.patch_node(node.name, {"spec": {"unschedulable": False}})

    def _pods_on(self, node: Node) -> List[client.V1Pod]:
        return self.core_v1.list_pod_for_all_namespaces(
            field_selector=f"spec.nodeName={node.name}"
        ).items

    def _evictable_pods_on(self, node: Node) -> List[client.V1Pod]:
        return [p for p in self._pods_on(node) if not (_is_daemonset_pod(p) or _is_mirror_pod(p))]

    def _evict(self, pod: client.V1Pod) -> None:
        body = client.V1Eviction(
            metadata=client.V1ObjectMeta(name=pod.metadata.name, namespace=pod.metadata.namespace),
        )
        self.core_v1.create_namespaced_pod_eviction(
            name=pod.metadata.name, namespace=pod.metadata.namespace, body=body
        )

    def drain(self, node: Node, timeout: float) -> DrainResult:
        """Evict schedulable workloads from a cordoned node.

        DaemonSet and mirror pods are left alone. Evictions refused by a
        PodDisruptionBudget (429) are retried until the deadline. API and
        transport errors are reported as FAILED rather than raised.
        """
        deadline = self.clock() + timeout

        try:
            pending = {_pod_key(p): p for p in self._evictable_pods_on(node)}
            logger.debug(f"{node.name}: {len(pending)} pod(s) to evict")

            while pending:
                for key, pod in list(pending.items()):
                    try:
                        self._evict(pod)
                        del pending[key]
                    except ApiException as e:
                        if e.status == 404:
                            del pending[key]
                        elif e.status == 429:
                            logger.debug(f"{node.name}: eviction of {key} blocked by disruption budget")
                        else:
                            raise
                if not pending:
                    break
                if self.clock() >= deadline:
                    return DrainResult.timed_out(
                        f"{len(pending)} pod(s) still blocked: {', '.join(sorted(pending))}"
                    )
                self.sleep(self.drain_poll_interval)

            while True:
                remaining = self._evictable_pods_on(node)
                if not remaining:
                    return DrainResult.success()
                if self.clock() >= deadline:
                    return DrainResult.timed_out(
                        f"{len(remaining)} pod(s) still terminating: "
                        f"{', '.join(sorted(_pod_key(p) for p in remaining))}"
                    )
                self.sleep(self.drain_poll_interval)

        except ApiException as e:
            return DrainResult.failed(e.status, e.reason or str(e))
        except (HTTPError, OSError) as e:
            return DrainResult.failed(None, f"{type(e).__name__}: {e}")

    def force_delete_pods(self, node: Node) -> int:
        """Delete every pod bound to ``node`` with no grace period.

        Returns:
            int: number of pods deleted
        """
        deleted = 0
        for pod in self._pods_on(node):
            try:
                self.core_v1.delete_namespaced_pod(
                    name=pod.metadata.name,
                    namespace=pod.metadata.namespace,
                    grace_period_seconds=0,
                    body=client.V1DeleteOptions(grace_period_seconds=0, propagation_policy="Background"),
                )
                deleted += 1
                logger.debug(f"{node.name}: force deleted {_pod_key(pod)}")
            except ApiException as e:
                if e.status != 404:
                    raise
        return deleted

    # Storage

    def list_volume_attachments_for(self, node: Node) -> Set[str]:
        attachments = self.storage_v1.list_volume_attachment().items
        return {a.metadata.name for a in attachments if a.spec and a.spec.node_name == node.name}

    # Status

    @staticmethod
    def condense_status(v1_node: client.V1Node) -> ReadinessState:
        conditions = (v1_node.status and v1_node.status.conditions) or []
        ready = next((c for c in conditions if c.type == "Ready"), None)
        if ready is None:
            return ReadinessState.UNKNOWN
        if ready.status != "True":
            return ReadinessState.NOT_READY
        if v1_node.spec and v1_node.spec.unschedulable:
            return ReadinessState.READY_CORDONED
        return ReadinessState.READY

    def get_node_status(self, node: Node) -> ReadinessState:
        return self.condense_status(self.core_v1.read_node(node.name))
