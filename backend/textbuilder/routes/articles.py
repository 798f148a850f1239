"""TextBuilder Generation Routes

Endpoints:
- POST /api/generate/titles - Title ideas for a topic or niche (50 credits)
- POST /api/generate/estimate - Credit estimate for an article config
- POST /api/generate/article - Generate and store an article (or queue it with "async": true)
- POST /api/generate/bulk - Queue a job generating one article per title
- GET /api/generate/status/{job_id} - Job progress and the articles written so far
- GET /api/generate/jobs - List the account's generation jobs
- DELETE /api/generate/jobs/{job_id} - Cancel a queued or running job
- GET /api/generate/articles - List the account's articles
- GET /api/generate/articles/{article_id} - Get one article
- PUT /api/generate/articles/{article_id} - Edit title, content or status
- DELETE /api/generate/articles/{article_id} - Delete one article
- DELETE /api/generate/articles - Delete several articles
- GET /api/generate/articles/{article_id}/export - Download as HTML or Markdown
"""

from fastapi import APIRouter, BackgroundTasks, HTTPException, Depends, Query, Response
from typing import Optional, Dict, Any, List
from pydantic import BaseModel, Field, ValidationError
import logging

from middleware import require_auth
from textbuilder.errors import GenerationError, TextBuilderError
from textbuilder.models.articles import ArticleConfig, ArticleStatus
from textbuilder.models.jobs import GenerationJobType
from textbuilder.pagination import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
from textbuilder.services.article_service import (
    EXPORT_FORMATS,
    article_service,
    estimate_article_credits,
    render_export,
)
from textbuilder.services.generation_jobs import estimated_minutes, generation_job_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/generate", tags=["Generation"])


class TitleIdeasRequest(BaseModel):
    topic: Optional[str] = None
    niche: Optional[str] = None
    count: int = Field(20, ge=1, le=50)


class EstimateRequest(BaseModel):
    config: Dict[str, Any] = Field(default_factory=dict)


class ArticleRequest(BaseModel):
    title: Optional[str] = None
    config: Optional[Dict[str, Any]] = None
    run_async: bool = Field(False, alias="async")  # Queue as a job instead of waiting

    model_config = {"populate_by_name": True}


class BulkRequest(BaseModel):
    titles: Optional[List[str]] = None
    config: Optional[Dict[str, Any]] = None


class ArticleUpdateRequest(BaseModel):
    title: Optional[str] = None
    content: Optional[str] = None
    status: Optional[ArticleStatus] = None


class ArticleIdsRequest(BaseModel):
    ids: Optional[List[str]] = None


MAX_BULK_TITLES = 50


def _parse_config(raw: Dict[str, Any]) -> ArticleConfig:
    try:
        return ArticleConfig.model_validate(raw)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=f"Invalid configuration: {e.errors()[0]['msg']}")


@router.post("/titles")
async def generate_titles(request: TitleIdeasRequest, user: dict = Depends(require_auth)):
    topic = (request.topic or "").strip()
    niche = (request.niche or "").strip()
    if not topic and not niche:
        raise HTTPException(status_code=400, detail="Please provide a topic or niche")

    try:
        titles, credits_used = await article_service.generate_title_ideas(
            account_id=user["account_id"],
            topic=topic or None,
            niche=niche or None,
            count=request.count,
        )
        return {"success": True, "data": {"titles": titles, "creditsUsed": credits_used}}
    except HTTPException:
        raise
    except GenerationError as e:
        logger.error(f"Title generation failed for {user['account_id']}: {e}")
        raise HTTPException(status_code=500, detail="Error generating titles")
    except TextBuilderError:
        raise
    except Exception as e:
        logger.error(f"Title generation error: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error generating titles")


@router.post("/estimate")
async def estimate_article(request: EstimateRequest, user: dict = Depends(require_auth)):
    config = _parse_config(request.config)
    return {"success": True, "data": {"estimatedCredits": estimate_article_credits(config)}}


def _job_accepted(job: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "success": True,
        "data": {
            "jobId": job["job_id"],
            "estimatedCredits": job["estimated_credits"],
            "estimatedTimeMinutes": estimated_minutes(len(job["titles"])),
        },
    }


@router.post("/article")
async def generate_article(
    request: ArticleRequest,
    response: Response,
    background_tasks: BackgroundTasks,
    user: dict = Depends(require_auth),
):
    title = (request.title or "").strip()
    if not title:
        raise HTTPException(status_code=400, detail="Please provide a title")
    if request.config is None:
        raise HTTPException(status_code=400, detail="Please provide configuration options")

    config = _parse_config(request.config)

    try:
        if request.run_async:
            job = await generation_job_service.create_job(
                account_id=user["account_id"],
                titles=[title],
                config=config,
                job_type=GenerationJobType.SINGLE,
            )
            background_tasks.add_task(generation_job_service.process_job, job["job_id"])
            response.status_code = 202
            return _job_accepted(job)

        article = await article_service.generate_article(
            account_id=user["account_id"],
            title=title,
            config=config,
        )
        return {"success": True, "data": {"article": article, "creditsUsed": article["credits_used"]}}
    except HTTPException:
        raise
    except GenerationError as e:
        logger.error(f"Article generation failed for {user['account_id']}: {e}")
        raise HTTPException(status_code=500, detail="Error generating article")
    except TextBuilderError:
        raise
    except Exception as e:
        logger.error(f"Article generation error: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error generating article")


@router.post("/bulk", status_code=202)
async def generate_bulk(
    request: BulkRequest,
    background_tasks: BackgroundTasks,
    user: dict = Depends(require_auth),
):
    titles = [t.strip() for t in (request.titles or []) if t and t.strip()]
    if not titles:
        raise HTTPException(status_code=400, detail="Please provide an array of titles")
    if len(titles) > MAX_BULK_TITLES:
        raise HTTPException(status_code=400, detail=f"A job can generate at most {MAX_BULK_TITLES} articles")
    if request.config is None:
        raise HTTPException(status_code=400, detail="Please provide configuration options")

    config = _parse_config(request.config)

    try:
        job = await generation_job_service.create_job(
            account_id=user["account_id"],
            titles=titles,
            config=config,
            job_type=GenerationJobType.BULK,
        )
        background_tasks.add_task(generation_job_service.process_job, job["job_id"])
        return _job_accepted(job)
    except TextBuilderError:
        raise
    except Exception as e:
        logger.error(f"Bulk generation error: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error starting bulk generation")


@router.get("/status/{job_id}")
async def get_job_status(job_id: str, user: dict = Depends(require_auth)):
    job, articles = await generation_job_service.get_job(user["account_id"], job_id)
    return {"success": True, "data": {"job": job, "articles": articles}}


@router.get("/jobs")
async def list_jobs(
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    user: dict = Depends(require_auth),
):
    try:
        jobs, pagination = await generation_job_service.list_jobs(
            account_id=user["account_id"],
            page=page,
            limit=limit,
        )
        return {"success": True, "data": jobs, "pagination": pagination}
    except Exception as e:
        logger.error(f"Failed to list jobs: {e}")
        raise HTTPException(status_code=500, detail="Failed to list jobs")


@router.delete("/jobs/{job_id}")
async def cancel_job(job_id: str, user: dict = Depends(require_auth)):
    result = await generation_job_service.cancel_job(user["account_id"], job_id)
    return {"success": True, "data": result}


@router.get("/articles")
async def list_articles(
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    status: Optional[str] = None,
    user: dict = Depends(require_auth),
):
    try:
        articles, pagination = await article_service.list_articles(
            account_id=user["account_id"],
            page=page,
            limit=limit,
            status=status,
        )
        return {"success": True, "data": articles, "pagination": pagination}
    except Exception as e:
        logger.error(f"Failed to list articles: {e}")
        raise HTTPException(status_code=500, detail="Failed to list articles")


@router.get("/articles/{article_id}")
async def get_article(article_id: str, user: dict = Depends(require_auth)):
    article = await article_service.get_article(user["account_id"], article_id)
    if not article:
        raise HTTPException(status_code=404, detail="Article not found")
    return {"success": True, "data": article}


@router.put("/articles/{article_id}")
async def update_article(
    article_id: str,
    request: ArticleUpdateRequest,
    user: dict = Depends(require_auth),
):
    fields = request.model_dump(exclude_none=True, mode="json")
    if not fields:
        raise HTTPException(status_code=400, detail="Please provide fields to update")
    if "title" in fields:
        fields["title"] = fields["title"].strip()
        if not fields["title"]:
            raise HTTPException(status_code=400, detail="Title cannot be empty")

    article = await article_service.update_article(user["account_id"], article_id, fields)
    if not article:
        raise HTTPException(status_code=404, detail="Article not found")
    return {"success": True, "data": article}


@router.delete("/articles/{article_id}")
async def delete_article(article_id: str, user: dict = Depends(require_auth)):
    if not await article_service.delete_article(user["account_id"], article_id):
        raise HTTPException(status_code=404, detail="Article not found")
    return {"success": True, "data": {}}


@router.delete("/articles")
async def delete_articles(request: ArticleIdsRequest, user: dict = Depends(require_auth)):
    if not request.ids:
        raise HTTPException(status_code=400, detail="Please provide an array of article IDs")

    deleted = await article_service.delete_articles(user["account_id"], request.ids)
    return {"success": True, "data": {"deletedCount": deleted}}


@router.get("/articles/{article_id}/export")
async def export_article(
    article_id: str,
    format: str = Query("html"),
    user: dict = Depends(require_auth),
):
    export_format = format.lower()
    if export_format not in EXPORT_FORMATS:
        raise HTTPException(status_code=400, detail="Export format must be html or markdown")

    article = await article_service.get_article(user["account_id"], article_id)
    if not article:
        raise HTTPException(status_code=404, detail="Article not found")

    body, media_type, filename = render_export(article, export_format)
    return Response(
        content=body,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
