"""Execution module: lease, gates and transaction delivery."""

from .executor import ArbitrageExecutor
from .lock import (
    ExecutionLease,
    ExecutionMutex,
    FailoverLockBackend,
    InMemoryLockBackend,
    LockBackend,
    RedisLockBackend,
)
from .submission import (
    ExecutionStatus,
    PrivateSubmissionChannel,
    PublicSubmissionChannel,
    SettlementRecord,
    SubmissionChannel,
    SubmissionResult,
)

__all__ = [
    "ArbitrageExecutor",
    "ExecutionLease",
    "ExecutionMutex",
    "FailoverLockBackend",
    "InMemoryLockBackend",
    "LockBackend",
    "RedisLockBackend",
    "ExecutionStatus",
    "PrivateSubmissionChannel",
    "PublicSubmissionChannel",
    "SettlementRecord",
    "SubmissionChannel",
    "SubmissionResult",
]
