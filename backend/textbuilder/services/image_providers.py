"""Image generation providers.

Each provider turns an ImageRequest into its own wire format, calls the
vendor API, then downloads every returned image and re-hosts it in our
storage under a fresh key. Providers are looked up by string key; unknown
keys fall back to DEFAULT_PROVIDER.
"""

from dataclasses import dataclass, field
from typing import Optional, Dict, Any, List
import logging
import os
import uuid

import httpx

from textbuilder.errors import GenerationError
from textbuilder.services.storage_adapter import StorageAdapter, storage_adapter

logger = logging.getLogger(__name__)

FLUX_API_URL = os.getenv("FLUX_API_URL", "https://api.flux.ai/v1/images/generations")
FLUX_API_KEY = os.getenv("FLUX_API_KEY")
RECRAFT_API_URL = os.getenv("RECRAFT_API_URL", "https://api.recraft.ai/v1/generate")
RECRAFT_API_KEY = os.getenv("RECRAFT_API_KEY")
IMAGE_PROVIDER_TIMEOUT_SECONDS = float(os.getenv("IMAGE_PROVIDER_TIMEOUT_SECONDS", "120"))

DEFAULT_PROVIDER = "flux"


@dataclass
class ImageRequest:
    prompt: str
    style: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None
    count: int = 1


@dataclass
class ImageBatch:
    """Re-hosted images plus how many were asked for, returned and lost.

    failed counts images the provider returned that could not be
    downloaded or stored.
    """
    urls: List[str] = field(default_factory=list)
    requested: int = 0
    returned: int = 0
    failed: int = 0

    @property
    def delivered(self) -> int:
        return len(self.urls)


class ImageProvider:
    """Base provider: shared HTTP call and re-hosting."""

    name = "base"
    default_style: Optional[str] = None

    def __init__(
        self,
        api_url: str,
        api_key: Optional[str],
        storage: Optional[StorageAdapter] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = IMAGE_PROVIDER_TIMEOUT_SECONDS,
    ):
        self.api_url = api_url
        self.api_key = api_key
        self.storage = storage or storage_adapter
        self.transport = transport
        self.timeout = timeout

    def build_payload(self, request: ImageRequest) -> Dict[str, Any]:
        raise NotImplementedError

    def extract_urls(self, body: Dict[str, Any]) -> List[str]:
        raise NotImplementedError

    async def _rehost(self, client: httpx.AsyncClient, source_url: str) -> str:
        response = await client.get(source_url)
        response.raise_for_status()
        key = f"{uuid.uuid4()}.jpg"
        await self.storage.put_object(
            key,
            response.content,
            "image/jpeg",
            metadata={"provider": self.name, "source_url": source_url},
        )
        return self.storage.public_url(key)

    async def generate(self, request: ImageRequest) -> ImageBatch:
        if not self.api_key:
            logger.error(f"{self.name} API key is not configured")
            raise GenerationError(f"{self.name} provider is not configured")

        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            try:
                response = await client.post(self.api_url, json=self.build_payload(request), headers=headers)
                response.raise_for_status()
                body = response.json()
            except httpx.HTTPStatusError as e:
                logger.error(
                    f"{self.name} returned {e.response.status_code}: {e.response.text[:500]}"
                )
                raise GenerationError(f"{self.name} request failed with status {e.response.status_code}")
            except (httpx.HTTPError, ValueError) as e:
                logger.error(f"{self.name} request failed: {e}")
                raise GenerationError(f"{self.name} request failed")

            # Never re-host (or bill) more than was asked for
            source_urls = self.extract_urls(body)[: request.count]
            batch = ImageBatch(requested=request.count, returned=len(source_urls))

            for source_url in source_urls:
                try:
                    batch.urls.append(await self._rehost(client, source_url))
                except Exception as e:
                    batch.failed += 1
                    logger.warning(f"{self.name}: dropped image {source_url}: {e}")

        logger.info(
            f"{self.name}: requested {batch.requested}, returned {batch.returned}, "
            f"delivered {batch.delivered}, failed {batch.failed}"
        )
        return batch


class FluxImageProvider(ImageProvider):
    name = "flux"
    default_style = "photographic"

    def __init__(self, **kwargs):
        kwargs.setdefault("api_url", FLUX_API_URL)
        kwargs.setdefault("api_key", FLUX_API_KEY)
        super().__init__(**kwargs)

    def build_payload(self, request: ImageRequest) -> Dict[str, Any]:
        return {
            "prompt": request.prompt,
            "style": request.style or self.default_style,
            "width": request.width or 1024,
            "height": request.height or 768,
            "num_images": request.count,
        }

    def extract_urls(self, body: Dict[str, Any]) -> List[str]:
        images = body.get("images") if isinstance(body, dict) else None
        if not isinstance(images, list):
            logger.error(f"flux: unexpected response body: {str(body)[:500]}")
            raise GenerationError("flux returned an unexpected response")
        urls = []
        for image in images:
            url = image.get("url") if isinstance(image, dict) else image
            if isinstance(url, str) and url:
                urls.append(url)
        return urls


class ReCraftImageProvider(ImageProvider):
    name = "recraft"
    default_style = "realistic"

    def __init__(self, **kwargs):
        kwargs.setdefault("api_url", RECRAFT_API_URL)
        kwargs.setdefault("api_key", RECRAFT_API_KEY)
        super().__init__(**kwargs)

    def build_payload(self, request: ImageRequest) -> Dict[str, Any]:
        return {
            "prompt": request.prompt,
            "style": request.style or self.default_style,
            "width": request.width or 1024,
            "height": request.height or 768,
            "count": request.count,
        }

    def extract_urls(self, body: Dict[str, Any]) -> List[str]:
        results = body.get("results") if isinstance(body, dict) else None
        if not isinstance(results, list):
            logger.error(f"recraft: unexpected response body: {str(body)[:500]}")
            raise GenerationError("recraft returned an unexpected response")
        return [r["url"] for r in results if isinstance(r, dict) and r.get("url")]


PROVIDERS: Dict[str, ImageProvider] = {
    "flux": FluxImageProvider(),
    "recraft": ReCraftImageProvider(),
}


def get_image_provider(service_type: Optional[str] = None) -> ImageProvider:
    """Provider for service_type, or the default provider."""
    key = (service_type or "").strip().lower()
    provider = PROVIDERS.get(key)
    if provider is None:
        if key:
            logger.info(f"Unknown image service '{service_type}', using {DEFAULT_PROVIDER}")
        provider = PROVIDERS[DEFAULT_PROVIDER]
    return provider
