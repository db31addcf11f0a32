"""Background synchronization: retry policy, connection monitor and queue."""

from multiflow_sync.sync.connection import ConnectionMonitor
from multiflow_sync.sync.executor import RetryableOperationExecutor
from multiflow_sync.sync.protocol import ConnectionState, OperationState, SyncKind, SyncOperation
from multiflow_sync.sync.queue import SyncQueue
from multiflow_sync.sync.retry_policy import Backoff, ErrorClass, RetryPolicy, classify_error
from multiflow_sync.sync.status import SyncStatus, SyncStatusTracker

__all__ = [
    "Backoff",
    "ConnectionMonitor",
    "ConnectionState",
    "ErrorClass",
    "OperationState",
    "RetryPolicy",
    "RetryableOperationExecutor",
    "SyncKind",
    "SyncOperation",
    "SyncQueue",
    "SyncStatus",
    "SyncStatusTracker",
    "classify_error",
]
