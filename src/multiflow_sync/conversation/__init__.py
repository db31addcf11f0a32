"""Open-conversation state and user actions."""

from multiflow_sync.conversation.actions import ActionOutcome, ConversationActions, SendOutcome
from multiflow_sync.conversation.models import (
    ConversationSnapshot,
    ConversationStatus,
    DeliveryStatus,
    Message,
    MessageSender,
)
from multiflow_sync.conversation.reconciler import (
    ConversationStateReconciler,
    ReconcilerState,
    api_fetcher,
)

__all__ = [
    "ActionOutcome",
    "ConversationActions",
    "ConversationSnapshot",
    "ConversationStateReconciler",
    "ConversationStatus",
    "DeliveryStatus",
    "Message",
    "MessageSender",
    "ReconcilerState",
    "SendOutcome",
    "api_fetcher",
]
