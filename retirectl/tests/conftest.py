import pytest

from retirectl.config import RetireConfig
from retirectl.modules.batch import BatchOrchestrator
from retirectl.modules.lifecycle import NodeLifecycle
from retirectl.modules.models import DrainResult, Node, ReadinessState, RetryPolicy
from retirectl.modules.retry import RetryExecutor


class Killed(BaseException):
    """Stands in for the operator killing the process."""


class FakeCluster:
    """In-memory cluster recording every call as (node, operation) in a shared trace."""

    role_label = "role"
    batch_label = "retiring"

    def __init__(self, trace, nodes):
        self.trace = trace
        self.nodes = {name: {"labels": dict(labels), "unschedulable": False} for name, labels in nodes.items()}
        self.drain_results = {}
        self.attachments = {}
        self.statuses = {}
        self.list_results = []
        self.fail_label = set()

    def selector(self, role, batch_id=None):
        return f"role={role}" + (f",retiring={batch_id}" if batch_id else "")

    def _node(self, name):
        labels = self.nodes[name]["labels"]
        return Node(name=name, address=f"10.0.0.{list(self.nodes).index(name) + 1}",
                    role=labels.get("role", ""), batch_id=labels.get("retiring"))

    def list_nodes(self, role, batch_id=None):
        self.trace.append((None, "list"))
        if self.list_results:
            return self.list_results.pop(0)
        return [
            self._node(name) for name, data in self.nodes.items()
            if data["labels"].get("role") == role
            and (batch_id is None or data["labels"].get("retiring") == batch_id)
        ]

    def list_retiring_nodes(self, role):
        return [
            self._node(name) for name, data in self.nodes.items()
            if data["labels"].get("role") == role and "retiring" in data["labels"]
        ]

    def label_for_retirement(self, node, batch_id):
        self.trace.append((node.name, "label"))
        if node.name in self.fail_label:
            raise RuntimeError(f"cannot label {node.name}")
        self.nodes[node.name]["labels"]["retiring"] = batch_id
        node.batch_id = batch_id

    def clear_retirement_label(self, node):
        self.trace.append((node.name, "unlabel"))
        self.nodes[node.name]["labels"].pop("retiring", None)
        node.batch_id = None

    def cordon(self, node):
        self.trace.append((node.name, "cordon"))
        self.nodes[node.name]["unschedulable"] = True

    def uncordon(self, node):
        self.trace.append((node.name, "uncordon"))
        self.nodes[node.name]["unschedulable"] = False

    def drain(self, node, timeout):
        self.trace.append((node.name, "drain"))
        return self.drain_results.get(node.name, DrainResult.success())

    def force_delete_pods(self, node):
        self.trace.append((node.name, "force_delete"))
        return 3

    def list_volume_attachments_for(self, node):
        self.trace.append((node.name, "attachments"))
        pending = self.attachments.get(node.name)
        return pending.pop(0) if pending else set()

    def get_node_status(self, node):
        self.trace.append((node.name, "status"))
        pending = self.statuses.get(node.name)
        return pending.pop(0) if pending else ReadinessState.READY_CORDONED


class FakeRemote:
    """Remote host that is unreachable for ``down_checks`` agent queries after a reboot."""

    def __init__(self, trace, node, states=None, kill_on_reboot=False, down_checks=1):
        self.trace = trace
        self.host = node.address
        self.node = node.name
        self.states = list(states or [])
        self.kill_on_reboot = kill_on_reboot
        self.down_checks = down_checks
        self.unreachable = 0

    def reboot(self):
        self.trace.append((self.node, "reboot"))
        if self.kill_on_reboot:
            raise Killed()
        self.unreachable = self.down_checks

    def service_is_active(self, service):
        self.trace.append((self.node, "agent"))
        if self.unreachable:
            self.unreachable -= 1
            raise ConnectionError(f"{self.host} unreachable")
        return (self.states.pop(0) if self.states else "active") == "active"


@pytest.fixture
def trace():
    return []


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def settings(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    return RetireConfig(context="test-cluster", role="worker", drain_timeout=30)


@pytest.fixture
def cluster(trace):
    return FakeCluster(trace, {
        "node-a": {"role": "worker"},
        "node-b": {"role": "worker"},
        "node-c": {"role": "worker"},
        "infra-1": {"role": "infra"},
    })


@pytest.fixture
def remotes(trace):
    """Per-node remote behaviour; tests set entries to FakeRemote kwargs."""
    return {}


@pytest.fixture
def retry(sleeps):
    return RetryExecutor(RetryPolicy(max_attempts=12, delay=8), sleep=sleeps.append)


@pytest.fixture
def lifecycle(cluster, remotes, retry, settings, sleeps, trace):
    def remote_factory(node):
        return FakeRemote(trace, node, **remotes.get(node.name, {}))
    return NodeLifecycle(cluster, remote_factory, retry, settings, sleep=sleeps.append)


@pytest.fixture
def orchestrator(cluster, lifecycle, retry, settings, sleeps):
    return BatchOrchestrator(cluster, lifecycle, retry, settings, sleep=sleeps.append)
