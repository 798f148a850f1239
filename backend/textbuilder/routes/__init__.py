"""TextBuilder Routes"""

from .images import router as images_router
from .articles import router as articles_router
from .credits import router as credits_router
from .payment import router as payment_router
from .settings import router as settings_router

__all__ = [
    "images_router",
    "articles_router",
    "credits_router",
    "payment_router",
    "settings_router",
]
