from .envelope import RawEnvelope as RawEnvelope
from .factory import ContextFactory as ContextFactory
from .polling import PollingSession as PollingSession
from .polling import PollingState as PollingState
from .polling import PollingTransport as PollingTransport
from .updates import Updates as Updates
from .webhook import WebhookReply as WebhookReply
from .webhook import WebhookTransport as WebhookTransport
from .webhook import create_webhook_app as create_webhook_app
from .webhook import create_webhook_router as create_webhook_router

__all__ = [
    "ContextFactory",
    "PollingSession",
    "PollingState",
    "PollingTransport",
    "RawEnvelope",
    "Updates",
    "WebhookReply",
    "WebhookTransport",
    "create_webhook_app",
    "create_webhook_router",
]
