"""Blocking waits used between lifecycle steps."""
import logging
import time
from typing import Callable, Optional

logger = logging.getLogger("waits")


class WaitTimeoutError(Exception):
    """Raised when a wait with a deadline gives up."""


def poll_until(
    condition: Callable[[], bool],
    interval: float,
    description: str,
    timeout: Optional[float] = None,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
    initial_delay: float = 0,
) -> int:
    """Call ``condition`` every ``interval`` seconds until it returns True.

    Errors raised by ``condition`` count as "not yet". With ``timeout`` left
    as None the wait never gives up. ``initial_delay`` is slept before the
    first check and counts against ``timeout``.

    Returns:
        int: number of checks performed

    Raises:
        WaitTimeoutError: If ``timeout`` is set and elapses first.
    """
    start_time = clock()
    checks = 0
    if initial_delay:
        sleep(initial_delay)

    while True:
        checks += 1
        try:
            if condition():
                logger.debug("%s: satisfied after %d check(s)", description, checks)
                return checks
        except Exception as e:
            logger.debug("%s: check failed, will retry: %s", description, e)

        if timeout is not None and clock() - start_time >= timeout:
            raise WaitTimeoutError(f"Timed out after {timeout:g}s waiting for {description}")

        sleep(interval)


def await_volume_detach(cluster, node, interval: float = 1, timeout: Optional[float] = None,
                        sleep: Callable[[float], None] = time.sleep) -> int:
    """Wait until no VolumeAttachment is bound to ``node``."""
    def detached() -> bool:
        node.volume_attachments = cluster.list_volume_attachments_for(node)
        if node.volume_attachments:
            logger.debug("%s: %d volume attachment(s) remaining: %s", node.name,
                         len(node.volume_attachments), ", ".join(sorted(node.volume_attachments)))
        return not node.volume_attachments

    return poll_until(detached, interval, f"volumes to detach from {node.name}", timeout, sleep)


def await_agent_down(remote, service: str, interval: float = 15, timeout: Optional[float] = None,
                     sleep: Callable[[float], None] = time.sleep) -> int:
    """Wait until ``service`` stops being active or the host stops answering.

    A reboot command returns while the node is still up, so the first check
    only happens after one ``interval``.
    """
    def down() -> bool:
        try:
            return not remote.service_is_active(service)
        except ConnectionError as e:
            logger.debug("%s unreachable: %s", remote.host, e)
            return True

    return poll_until(down, interval, f"{remote.host} to go down", timeout, sleep, initial_delay=interval)


def await_agent_active(remote, service: str, interval: float = 15, timeout: Optional[float] = None,
                       sleep: Callable[[float], None] = time.sleep) -> int:
    """Wait until ``service`` reports active on the remote host."""
    return poll_until(
        lambda: remote.service_is_active(service),
        interval,
        f"{service} to become active on {remote.host}",
        timeout,
        sleep,
    )


def await_ready(cluster, node, interval: float = 10, timeout: Optional[float] = None,
                sleep: Callable[[float], None] = time.sleep) -> int:
    """Wait until the node reports Ready (cordoned or not)."""
    def ready() -> bool:
        node.readiness = cluster.get_node_status(node)
        logger.debug("%s: status %s", node.name, node.readiness.value)
        return node.readiness.is_ready

    return poll_until(ready, interval, f"{node.name} to become Ready", timeout, sleep)
