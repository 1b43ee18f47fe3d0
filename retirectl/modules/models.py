"""
Data models for rolling node retirement.
"""
import re
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Set

BATCH_ID_FORMAT = "%Y-%m-%dT%H-%M-%SZ"
BATCH_ID_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}-\d{2}-\d{2}Z$")


class ReadinessState(str, Enum):
    """Condensed node status, as printed in the STATUS column of `kubectl get nodes`."""
    READY = "Ready"
    READY_CORDONED = "Ready,SchedulingDisabled"
    NOT_READY = "NotReady"
    UNKNOWN = "Unknown"

    @property
    def is_ready(self) -> bool:
        return self in (ReadinessState.READY, ReadinessState.READY_CORDONED)


class DrainOutcome(str, Enum):
    SUCCESS = "success"
    TIMED_OUT = "timed_out"
    FAILED = "failed"


class LifecycleState(str, Enum):
    """Per-node lifecycle steps, in the order they are walked."""
    DRAINING = "draining"
    AWAITING_VOLUME_DETACH = "awaiting_volume_detach"
    REBOOTING = "rebooting"
    AWAITING_READY = "awaiting_ready"
    UNLABELING = "unlabeling"


@dataclass
class Node:
    """Represents a cluster node selected for retirement."""
    name: str
    address: str
    role: str
    batch_id: Optional[str] = None
    readiness: ReadinessState = ReadinessState.UNKNOWN
    volume_attachments: Set[str] = field(default_factory=set)

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True)
class DrainResult:
    outcome: DrainOutcome
    code: Optional[int] = None
    message: str = ""

    @classmethod
    def success(cls) -> "DrainResult":
        return cls(DrainOutcome.SUCCESS)

    @classmethod
    def timed_out(cls, message: str = "") -> "DrainResult":
        return cls(DrainOutcome.TIMED_OUT, message=message)

    @classmethod
    def failed(cls, code: Optional[int], message: str = "") -> "DrainResult":
        return cls(DrainOutcome.FAILED, code=code, message=message)

    @property
    def ok(self) -> bool:
        return self.outcome is DrainOutcome.SUCCESS


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retry applied to every cluster call that must eventually succeed."""
    max_attempts: int = 12
    delay: float = 8.0


@dataclass
class LifecycleReport:
    """Tracks what happened to one node while it was cycled."""
    node: str
    states: List[LifecycleState] = field(default_factory=list)
    drain: Optional[DrainResult] = None
    forced_pod_deletes: int = 0
    start_time: float = field(default_factory=time.time)
    end_time: Optional[float] = None

    def enter(self, state: LifecycleState) -> None:
        self.states.append(state)

    def finish(self) -> None:
        self.end_time = time.time()

    @property
    def completed(self) -> bool:
        return self.end_time is not None and LifecycleState.UNLABELING in self.states

    @property
    def duration(self) -> float:
        return (self.end_time or time.time()) - self.start_time


@dataclass
class RetirementBatch:
    """A set of nodes sharing one retirement batch id."""
    batch_id: str
    role: str
    context: str
    nodes: List[str] = field(default_factory=list)
    reports: List[LifecycleReport] = field(default_factory=list)
    resumed: bool = False

    @property
    def completed(self) -> bool:
        return len(self.reports) == len(self.nodes) and all(r.completed for r in self.reports)
