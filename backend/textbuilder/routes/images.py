"""TextBuilder Image Routes

Endpoints:
- POST /api/images/generate - Generate images (50 credits per delivered image)
- GET /api/images/estimate - Credit estimate for a batch
- GET /api/images/files/{key} - Serve a re-hosted image (public)
"""

from fastapi import APIRouter, HTTPException, Depends, Query, Response
from typing import Optional
from pydantic import BaseModel, Field
import logging

from middleware import require_auth
from textbuilder.errors import GenerationError, TextBuilderError
from textbuilder.services.image_providers import DEFAULT_PROVIDER
from textbuilder.services.image_service import estimate_image_credits, image_service
from textbuilder.services.storage_adapter import ObjectNotFoundError, storage_adapter

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/images", tags=["Images"])

MAX_IMAGES_PER_REQUEST = 10


class GenerateImagesRequest(BaseModel):
    prompt: Optional[str] = None
    style: Optional[str] = None
    width: Optional[int] = Field(None, gt=0)
    height: Optional[int] = Field(None, gt=0)
    number_of_images: int = Field(1, ge=1, le=MAX_IMAGES_PER_REQUEST, alias="numberOfImages")
    service_type: str = Field(DEFAULT_PROVIDER, alias="serviceType")

    model_config = {"populate_by_name": True}


@router.post("/generate")
async def generate_images(request: GenerateImagesRequest, user: dict = Depends(require_auth)):
    """Generate images and charge only for the ones delivered."""
    if not request.prompt or not request.prompt.strip():
        raise HTTPException(status_code=400, detail="Please provide a prompt for image generation")

    try:
        result = await image_service.generate_images(
            account_id=user["account_id"],
            prompt=request.prompt.strip(),
            style=request.style,
            width=request.width,
            height=request.height,
            number_of_images=request.number_of_images,
            service_type=request.service_type,
        )
        return {"success": True, "data": result}
    except HTTPException:
        raise
    except GenerationError as e:
        logger.error(f"Image generation failed for {user['account_id']}: {e}")
        raise HTTPException(status_code=500, detail="Error generating images")
    except TextBuilderError:
        raise
    except Exception as e:
        logger.error(f"Image generation error: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error generating images")


@router.get("/estimate")
async def estimate_images(
    number_of_images: int = Query(1, ge=1, le=MAX_IMAGES_PER_REQUEST, alias="numberOfImages"),
    user: dict = Depends(require_auth),
):
    return {"success": True, "data": {"estimatedCredits": estimate_image_credits(number_of_images)}}


@router.get("/files/{key}")
async def get_image_file(key: str):
    """Serve a stored image. No auth - URLs are handed out as public links."""
    try:
        content, meta = await storage_adapter.get_object(key)
    except ObjectNotFoundError:
        raise HTTPException(status_code=404, detail="Image not found")

    return Response(
        content=content,
        media_type=meta.content_type,
        headers={"Cache-Control": "public, max-age=31536000, immutable"},
    )
