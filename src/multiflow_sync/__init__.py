"""multiflow-sync - Reliable background sync core for the Multiflow chat/CRM."""

from multiflow_sync.api.client import ApiClient
from multiflow_sync.conversation.actions import ActionOutcome, ConversationActions, SendOutcome
from multiflow_sync.conversation.models import ConversationSnapshot, DeliveryStatus, Message
from multiflow_sync.conversation.reconciler import ConversationStateReconciler
from multiflow_sync.errors import (
    ApiError,
    ConversationNotFoundError,
    MultiflowError,
    OfflineError,
    OperationFailedError,
    PayloadValidationError,
    SyncCancelledError,
    SyncFailedError,
)
from multiflow_sync.realtime.channel import RealtimeChannel, RealtimeEvent
from multiflow_sync.sync.connection import ConnectionMonitor
from multiflow_sync.sync.executor import RetryableOperationExecutor
from multiflow_sync.sync.queue import SyncQueue
from multiflow_sync.sync.retry_policy import ErrorClass, RetryPolicy
from multiflow_sync.sync.status import SyncStatusTracker
from multiflow_sync.utils.config import Config, get_config

__version__ = "0.1.0"

__all__ = [
    # Sync core
    "RetryPolicy",
    "ErrorClass",
    "ConnectionMonitor",
    "SyncQueue",
    "RetryableOperationExecutor",
    "SyncStatusTracker",
    # Conversations
    "ConversationStateReconciler",
    "ConversationActions",
    "ConversationSnapshot",
    "Message",
    "DeliveryStatus",
    "SendOutcome",
    "ActionOutcome",
    # Transport
    "ApiClient",
    "RealtimeChannel",
    "RealtimeEvent",
    # Errors
    "MultiflowError",
    "ApiError",
    "OfflineError",
    "ConversationNotFoundError",
    "PayloadValidationError",
    "SyncFailedError",
    "SyncCancelledError",
    "OperationFailedError",
    # Config
    "Config",
    "get_config",
    # Version
    "__version__",
]
