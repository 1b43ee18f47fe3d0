"""
Node retirement building blocks.

- ClusterClient: Kubernetes API operations (select, label, drain, status)
- RemoteHost: reboot and service checks over SSH
- RetryExecutor: bounded fixed-delay retry for cluster calls
- NodeLifecycle: drain -> detach -> reboot -> ready -> unlabel for one node
- BatchOrchestrator: fresh and resumed batches, one node at a time
"""
from .batch import BatchOrchestrator, mint_batch_id
from .kube import ClusterClient
from .lifecycle import NodeLifecycle
from .models import (
    DrainOutcome,
    DrainResult,
    LifecycleReport,
    LifecycleState,
    Node,
    ReadinessState,
    RetirementBatch,
    RetryPolicy,
)
from .retry import RetryError, RetryExecutor
from .ssh import RemoteHost
from .waits import WaitTimeoutError

__all__ = [
    'BatchOrchestrator',
    'ClusterClient',
    'DrainOutcome',
    'DrainResult',
    'LifecycleReport',
    'LifecycleState',
    'NodeLifecycle',
    'Node',
    'ReadinessState',
    'RemoteHost',
    'RetirementBatch',
    'RetryError',
    'RetryExecutor',
    'RetryPolicy',
    'WaitTimeoutError',
    'mint_batch_id',
]
