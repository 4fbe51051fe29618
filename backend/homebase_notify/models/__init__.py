from homebase_notify.models.conversation import Conversation, ConversationMember, Message
from homebase_notify.models.notification import Notification
from homebase_notify.models.notification_outbox import NotificationOutbox
from homebase_notify.models.notification_preference import NotificationPreference
from homebase_notify.models.profile import Profile
from homebase_notify.models.push_subscription import PushSubscription
from homebase_notify.models.typing_state import TypingState

__all__ = [
    "Conversation",
    "ConversationMember",
    "Message",
    "Notification",
    "NotificationOutbox",
    "NotificationPreference",
    "Profile",
    "PushSubscription",
    "TypingState",
]
