"""TextBuilder Services"""

from .credit_service import credit_service, ChargeOutcome
from .account_service import account_service
from .image_service import image_service
from .article_service import article_service
from .payment_service import payment_service
from .settings_service import settings_service
from .generation_jobs import generation_job_service

__all__ = [
    "credit_service",
    "ChargeOutcome",
    "account_service",
    "image_service",
    "article_service",
    "payment_service",
    "settings_service",
    "generation_job_service",
]
