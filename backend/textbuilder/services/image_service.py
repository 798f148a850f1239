"""TextBuilder Image Service

Paid image generation: 50 credits per image, charged only for images
actually delivered. A batch that delivers nothing is a generation failure
and costs nothing.
"""

from typing import Optional, Dict, Any
import logging

from textbuilder.errors import GenerationError
from textbuilder.models.credits import CreditFeature, IMAGE_CREDIT_COST
from textbuilder.services.credit_service import ChargeOutcome, credit_service
from textbuilder.services.image_providers import ImageRequest, get_image_provider

logger = logging.getLogger(__name__)


def estimate_image_credits(number_of_images: int) -> int:
    return number_of_images * IMAGE_CREDIT_COST


class ImageService:
    """Image generation under the credit protocol."""

    async def generate_images(
        self,
        account_id: str,
        prompt: str,
        style: Optional[str] = None,
        width: Optional[int] = None,
        height: Optional[int] = None,
        number_of_images: int = 1,
        service_type: Optional[str] = None,
    ) -> Dict[str, Any]:
        provider = get_image_provider(service_type)
        request = ImageRequest(
            prompt=prompt,
            style=style,
            width=width,
            height=height,
            count=number_of_images,
        )
        cost = estimate_image_credits(number_of_images)

        async def run() -> ChargeOutcome:
            batch = await provider.generate(request)
            if batch.delivered == 0:
                raise GenerationError(
                    f"{provider.name} delivered no images "
                    f"(returned {batch.returned}, failed {batch.failed})"
                )
            return ChargeOutcome(
                result=batch,
                credits_used=estimate_image_credits(batch.delivered),
                description=f"Generated {batch.delivered} image(s)",
                metadata={
                    "provider": provider.name,
                    "requested": batch.requested,
                    "failed": batch.failed,
                },
            )

        batch, transaction = await credit_service.charge(
            account_id=account_id,
            cost=cost,
            feature=CreditFeature.IMAGE_GENERATION,
            description=f"Generate {number_of_images} image(s)",
            operation=run,
        )

        return {
            "images": batch.urls,
            "creditsUsed": estimate_image_credits(batch.delivered),
            "requested": batch.requested,
            "delivered": batch.delivered,
            "returned": batch.returned,
            "failedCount": batch.failed,
            "transactionId": transaction.transaction_id if transaction else None,
        }


# Global service instance
image_service = ImageService()
