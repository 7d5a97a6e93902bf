from .api import API as API
from .chain import Chain as Chain
from .composer import Composer as Composer
from .config import VKOptions as VKOptions
from .constants import UpdateSource as UpdateSource
from .hear import build_hear_middleware as build_hear_middleware
from .updates import Updates as Updates
from .utils.logging import setup_logging as setup_logging
from .vk import VK as VK

__all__ = [
    "VK",
    "API",
    "Chain",
    "Composer",
    "Updates",
    "UpdateSource",
    "VKOptions",
    "build_hear_middleware",
    "setup_logging",
]
