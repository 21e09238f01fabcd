from pulse.models.conversation import Conversation, ConversationArchive, ConversationParticipant, direct_key_for
from pulse.models.message import CONTENT_TYPES, Message, MessageHiddenFor, MessageReadReceipt
from pulse.models.notification import NOTIFICATION_MESSAGES, Notification
from pulse.models.realtime_outbox_event import RealtimeOutboxEvent
from pulse.models.user import User

__all__ = [
    "CONTENT_TYPES",
    "Conversation",
    "ConversationArchive",
    "ConversationParticipant",
    "Message",
    "MessageHiddenFor",
    "MessageReadReceipt",
    "NOTIFICATION_MESSAGES",
    "Notification",
    "RealtimeOutboxEvent",
    "User",
    "direct_key_for",
]
