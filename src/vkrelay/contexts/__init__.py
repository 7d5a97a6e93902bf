from .attachments import Attachment as Attachment
from .attachments import AttachmentsView as AttachmentsView
from .attachments import HasAttachments as HasAttachments
from .base import Context as Context
from .dialog import MessageFlagsContext as MessageFlagsContext
from .dialog import ReadMessagesContext as ReadMessagesContext
from .friend_activity import FriendActivityContext as FriendActivityContext
from .group_member import GroupMemberContext as GroupMemberContext
from .message import ForwardedMessage as ForwardedMessage
from .message import ForwardsCollection as ForwardsCollection
from .message import MessageContext as MessageContext
from .message_event import MessageEventContext as MessageEventContext
from .message_subscription import MessageSubscriptionContext as MessageSubscriptionContext
from .typing_state import TypingContext as TypingContext
from .unsupported import UnsupportedContext as UnsupportedContext

__all__ = [
    "Attachment",
    "AttachmentsView",
    "HasAttachments",
    "Context",
    "ForwardedMessage",
    "ForwardsCollection",
    "FriendActivityContext",
    "GroupMemberContext",
    "MessageContext",
    "MessageEventContext",
    "MessageFlagsContext",
    "MessageSubscriptionContext",
    "ReadMessagesContext",
    "TypingContext",
    "UnsupportedContext",
]
