"""TextBuilder Article Models"""

from pydantic import BaseModel, Field
from typing import Optional, Dict, Any
from datetime import datetime, timezone
from enum import Enum
import uuid


class ArticleStatus(str, Enum):
    DRAFT = "draft"
    PUBLISHED = "published"


class ArticleConfig(BaseModel):
    """Generation options. Unknown keys are kept for the prompt."""
    length: Optional[str] = "medium"  # short | medium | long
    tone: Optional[str] = None
    language: Optional[str] = None
    generate_images: bool = Field(False, alias="generateImages")
    image_count: int = Field(0, ge=0, alias="imageCount")
    takeaways: int = Field(0, ge=0)
    faq_items: int = Field(0, ge=0, alias="faqItems")

    model_config = {"extra": "allow", "populate_by_name": True}


class Article(BaseModel):
    article_id: str = Field(default_factory=lambda: f"ART-{uuid.uuid4().hex[:12].upper()}")
    account_id: str
    title: str
    content: str
    word_count: int
    status: ArticleStatus = ArticleStatus.DRAFT
    config: Dict[str, Any] = Field(default_factory=dict)
    credits_used: int = 0
    job_id: Optional[str] = None  # Set for articles written by a generation job
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = {"extra": "ignore", "use_enum_values": True, "validate_default": True}
