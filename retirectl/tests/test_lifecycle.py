import pytest

from retirectl.config import PollConfig, RetireConfig
from retirectl.modules.lifecycle import NodeLifecycle
from retirectl.modules.models import DrainOutcome, DrainResult, LifecycleState, ReadinessState
from retirectl.modules.retry import RetryError
from retirectl.modules.waits import WaitTimeoutError

from conftest import FakeRemote


def ops_for(trace, name):
    return [op for node, op in trace if node == name]


def labeled(cluster, name, batch="2024-01-01T00-00-00Z"):
    cluster.nodes[name]["labels"]["retiring"] = batch
    return cluster._node(name)


def test_clean_cycle_walks_every_state_in_order(lifecycle, cluster, trace):
    node = labeled(cluster, "node-a")

    report = lifecycle.run(node)

    assert report.states == [
        LifecycleState.DRAINING,
        LifecycleState.AWAITING_VOLUME_DETACH,
        LifecycleState.REBOOTING,
        LifecycleState.AWAITING_READY,
        LifecycleState.UNLABELING,
    ]
    assert report.completed
    assert report.drain.outcome is DrainOutcome.SUCCESS
    assert ops_for(trace, "node-a") == [
        "cordon", "drain", "attachments", "reboot", "agent", "agent", "status", "uncordon", "unlabel",
    ]
    assert "retiring" not in cluster.nodes["node-a"]["labels"]
    assert cluster.nodes["node-a"]["unschedulable"] is False


@pytest.mark.parametrize("result", [
    DrainResult.timed_out("1 pod(s) still blocked"),
    DrainResult.failed(500, "Internal Server Error"),
    DrainResult.failed(None, "MaxRetryError: connection refused"),
])
def test_drain_failure_falls_back_to_force_delete_once(lifecycle, cluster, trace, result):
    node = labeled(cluster, "node-b")
    cluster.drain_results["node-b"] = result

    report = lifecycle.run(node)

    ops = ops_for(trace, "node-b")
    assert ops.count("force_delete") == 1
    assert ops.index("drain") < ops.index("force_delete") < ops.index("attachments")
    assert report.forced_pod_deletes == 3
    assert report.states[-1] is LifecycleState.UNLABELING
    assert "retiring" not in cluster.nodes["node-b"]["labels"]


def test_successful_drain_never_force_deletes(lifecycle, cluster, trace):
    lifecycle.run(labeled(cluster, "node-a"))
    assert "force_delete" not in ops_for(trace, "node-a")


def test_waits_poll_at_their_intervals(lifecycle, cluster, remotes, trace, sleeps):
    cluster.attachments["node-a"] = [{"csi-1"}, {"csi-1"}, set()]
    cluster.statuses["node-a"] = [ReadinessState.NOT_READY, ReadinessState.READY_CORDONED]
    remotes["node-a"] = {"states": ["inactive", "activating", "active"]}

    lifecycle.run(labeled(cluster, "node-a"))

    assert sleeps == [1, 1, 15, 15, 15, 10]
    ops = ops_for(trace, "node-a")
    assert ops.count("attachments") == 3
    assert ops.count("agent") == 4
    assert ops.count("status") == 2
    assert ops.index("status") > ops.index("agent")


def test_agent_first_checked_one_interval_after_reboot(cluster, retry, settings, trace):
    lifecycle = NodeLifecycle(
        cluster, lambda n: FakeRemote(trace, n), retry, settings,
        sleep=lambda seconds: trace.append((None, f"sleep {seconds:g}")),
    )

    lifecycle.run(labeled(cluster, "node-a"))

    after_reboot = [op for _, op in trace[trace.index(("node-a", "reboot")) + 1:]]
    assert after_reboot[:3] == ["sleep 15", "agent", "agent"]


def test_node_still_up_after_reboot_is_not_readmitted(cluster, retry, trace, tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    settings = RetireConfig(
        context="test-cluster", role="worker",
        polling=PollConfig(agent_interval=15, agent_timeout=0),
    )
    lifecycle = NodeLifecycle(
        cluster, lambda n: FakeRemote(trace, n, down_checks=0), retry, settings, sleep=lambda _: None
    )

    with pytest.raises(WaitTimeoutError):
        lifecycle.run(labeled(cluster, "node-a"))

    ops = ops_for(trace, "node-a")
    assert "status" not in ops
    assert "uncordon" not in ops
    assert cluster.nodes["node-a"]["labels"]["retiring"] == "2024-01-01T00-00-00Z"


def test_uncordon_only_after_ready(lifecycle, cluster, trace):
    cluster.statuses["node-a"] = [ReadinessState.UNKNOWN, ReadinessState.READY]
    lifecycle.run(labeled(cluster, "node-a"))
    ops = ops_for(trace, "node-a")
    assert ops.count("status") == 2
    assert ops[ops.index("uncordon") - 1] == "status"


def test_label_kept_when_unlabel_keeps_failing(lifecycle, cluster, trace, sleeps):
    node = labeled(cluster, "node-a")

    def broken(n):
        trace.append((n.name, "unlabel"))
        raise ConnectionError("apiserver unreachable")

    cluster.clear_retirement_label = broken

    with pytest.raises(RetryError):
        lifecycle.run(node)

    assert ops_for(trace, "node-a").count("unlabel") == 12
    assert cluster.nodes["node-a"]["labels"]["retiring"] == "2024-01-01T00-00-00Z"


def test_optional_ready_deadline_stops_wait_and_keeps_label(cluster, retry, trace, tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    settings = RetireConfig(
        context="test-cluster", role="worker",
        polling=PollConfig(ready_interval=10, ready_timeout=0),
    )
    cluster.statuses["node-a"] = [ReadinessState.NOT_READY] * 5
    lifecycle = NodeLifecycle(cluster, lambda n: FakeRemote(trace, n), retry, settings, sleep=lambda _: None)

    with pytest.raises(WaitTimeoutError):
        lifecycle.run(labeled(cluster, "node-a"))

    assert "uncordon" not in ops_for(trace, "node-a")
    assert cluster.nodes["node-a"]["labels"]["retiring"] == "2024-01-01T00-00-00Z"
