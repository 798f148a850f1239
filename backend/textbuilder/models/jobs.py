"""TextBuilder Generation Job Models

A job generates one or more articles in the background. Credits for the
whole job are reserved when it is queued (one hold per job) and settled
once it stops: delivered articles are charged, the rest is returned.
"""

from pydantic import BaseModel, Field
from typing import Optional, Dict, Any, List
from datetime import datetime, timezone
from enum import Enum
import uuid


class GenerationJobType(str, Enum):
    SINGLE = "single"
    BULK = "bulk"


class GenerationJobStatus(str, Enum):
    """Job lifecycle.

    QUEUED -> RUNNING -> COMPLETED | FAILED
    QUEUED | RUNNING -> CANCELLED
    """
    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


FINISHED_JOB_STATUSES = (
    GenerationJobStatus.COMPLETED.value,
    GenerationJobStatus.FAILED.value,
    GenerationJobStatus.CANCELLED.value,
)


class GenerationJob(BaseModel):
    job_id: str = Field(default_factory=lambda: f"JOB-{uuid.uuid4().hex[:12].upper()}")
    account_id: str
    type: GenerationJobType = GenerationJobType.SINGLE
    status: GenerationJobStatus = GenerationJobStatus.QUEUED
    progress: int = 0  # Percent of titles attempted

    titles: List[str]
    completed_titles: List[str] = Field(default_factory=list)
    failed_titles: List[str] = Field(default_factory=list)
    article_ids: List[str] = Field(default_factory=list)
    config: Dict[str, Any] = Field(default_factory=dict)

    credits_per_article: int
    estimated_credits: int
    actual_credits: int = 0
    hold_id: Optional[str] = None
    error_message: Optional[str] = None

    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = {"extra": "ignore", "use_enum_values": True, "validate_default": True}
