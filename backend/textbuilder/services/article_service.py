"""TextBuilder Article Service

Article and title-idea generation with Gemini, charged through the credit
protocol, plus editing, deletion and export of stored articles. The article
cost is estimated up front from the generation config and charged in full
once the article is stored.
"""

from datetime import datetime, timezone
from typing import Optional, Dict, Any, List, Tuple
import html
import logging
import math
import re

from pymongo import ReturnDocument

from database import database
from textbuilder.errors import GenerationError
from textbuilder.models.articles import Article, ArticleConfig
from textbuilder.models.credits import (
    ARTICLE_BUFFER_RATIO,
    ARTICLE_DEFAULT_LENGTH_CREDITS,
    ARTICLE_FAQ_CREDITS,
    ARTICLE_LENGTH_CREDITS,
    ARTICLE_TAKEAWAY_CREDITS,
    CreditFeature,
    IMAGE_CREDIT_COST,
    TITLE_IDEAS_CREDIT_COST,
)
from textbuilder.pagination import build_pagination, page_window
from textbuilder.services.credit_service import ChargeOutcome, credit_service
from utils.llm_chat import chat

logger = logging.getLogger(__name__)

ARTICLE_SYSTEM_PROMPT = (
    "You are a professional SEO content writer. Write complete, well-structured "
    "articles in Markdown with an introduction, H2/H3 sections and a conclusion. "
    "Return only the article."
)

TITLE_SYSTEM_PROMPT = (
    "You are an SEO strategist. Suggest blog article titles that are specific, "
    "search-friendly and under 70 characters. Return one title per line, no numbering."
)

LENGTH_WORDS = {"short": 800, "medium": 1500, "long": 2500}

EDITABLE_FIELDS = ("title", "content", "status")
EXPORT_FORMATS = ("html", "markdown", "md")
MARKDOWN_FORMATS = ("markdown", "md")


def estimate_article_credits(config: ArticleConfig) -> int:
    """Credit estimate for one article.

    Base by length, plus images, takeaways and FAQ items, plus a 10% buffer,
    rounded up.
    """
    base = ARTICLE_LENGTH_CREDITS.get(config.length or "", ARTICLE_DEFAULT_LENGTH_CREDITS)
    if config.generate_images:
        base += config.image_count * IMAGE_CREDIT_COST
    base += config.takeaways * ARTICLE_TAKEAWAY_CREDITS
    base += config.faq_items * ARTICLE_FAQ_CREDITS
    # round() first so float noise (e.g. 1650.0000000000002) does not add a credit
    return math.ceil(round(base * (1 + ARTICLE_BUFFER_RATIO), 6))


def build_article_prompt(title: str, config: ArticleConfig) -> str:
    words = LENGTH_WORDS.get(config.length or "", LENGTH_WORDS["medium"])
    lines = [f"Title: {title}", f"Target length: about {words} words."]
    if config.tone:
        lines.append(f"Tone: {config.tone}.")
    if config.language:
        lines.append(f"Language: {config.language}.")
    if config.takeaways:
        lines.append(f"Start with a 'Key Takeaways' list of {config.takeaways} bullet points.")
    if config.faq_items:
        lines.append(f"End with an FAQ section of {config.faq_items} questions and answers.")
    return "\n".join(lines)


def parse_titles(text: str, count: int) -> List[str]:
    titles = []
    for line in text.splitlines():
        # Models number or bullet lines even when told not to
        title = re.sub(r"^\s*(?:\d+[.)]|[-*•])\s*", "", line).strip().strip('"')
        if title:
            titles.append(title)
    return titles[:count]


class ArticleService:
    """Article generation and retrieval."""

    def _get_db(self):
        return database.get_db()

    async def generate_title_ideas(
        self,
        account_id: str,
        topic: Optional[str] = None,
        niche: Optional[str] = None,
        count: int = 20,
    ) -> Tuple[List[str], int]:
        """Return (titles, credits used)."""
        prompt_lines = []
        if topic:
            prompt_lines.append(f"Topic: {topic}")
        if niche:
            prompt_lines.append(f"Niche: {niche}")
        prompt_lines.append(f"Number of titles: {count}")

        async def run() -> ChargeOutcome:
            try:
                text = await chat(TITLE_SYSTEM_PROMPT, "\n".join(prompt_lines))
            except Exception as e:
                raise GenerationError(f"Title generation failed: {e}")
            titles = parse_titles(text, count)
            if not titles:
                raise GenerationError("Title generation returned no titles")
            return ChargeOutcome(result=titles)

        titles, _ = await credit_service.charge(
            account_id=account_id,
            cost=TITLE_IDEAS_CREDIT_COST,
            feature=CreditFeature.TITLE_GENERATION,
            description="Title ideas generation",
            operation=run,
        )
        return titles, TITLE_IDEAS_CREDIT_COST

    async def write_article(
        self,
        account_id: str,
        title: str,
        config: ArticleConfig,
        credits_used: int,
        job_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Generate article content and return the (unsaved) article document.

        Raises GenerationError when the model call fails or times out.
        """
        try:
            content = await chat(ARTICLE_SYSTEM_PROMPT, build_article_prompt(title, config))
        except Exception as e:
            raise GenerationError(f"Article generation failed: {e}")

        article = Article(
            account_id=account_id,
            title=title,
            content=content,
            word_count=count_words(content),
            config=config.model_dump(by_alias=True),
            credits_used=credits_used,
            job_id=job_id,
        )
        return article.model_dump()

    async def generate_article(
        self,
        account_id: str,
        title: str,
        config: ArticleConfig,
    ) -> Dict[str, Any]:
        """Generate, store and charge for one article."""
        cost = estimate_article_credits(config)
        db = self._get_db()
        stored = []

        async def run() -> ChargeOutcome:
            doc = await self.write_article(account_id, title, config, cost)
            await db.articles.insert_one(dict(doc))
            stored.append(doc["article_id"])
            return ChargeOutcome(
                result=doc,
                description=f"Article generation: {title[:80]}",
                reference_id=doc["article_id"],
            )

        try:
            article, _ = await credit_service.charge(
                account_id=account_id,
                cost=cost,
                feature=CreditFeature.ARTICLE_GENERATION,
                description=f"Article generation: {title[:80]}",
                operation=run,
            )
        except Exception:
            if stored:
                # The reservation lapsed before the commit; nothing was paid for it
                logger.error(f"Charge for article {stored[0]} failed after it was stored, removing it")
                await db.articles.delete_one({"article_id": stored[0]})
            raise
        logger.info(f"Generated article {article['article_id']} for account {account_id} ({cost} credits)")
        return article

    async def list_articles(
        self,
        account_id: str,
        page: int = 1,
        limit: int = 10,
        status: Optional[str] = None,
    ) -> Tuple[List[Dict[str, Any]], Dict[str, Any]]:
        db = self._get_db()
        query = {"account_id": account_id}
        if status:
            query["status"] = status

        skip, limit = page_window(page, limit)
        total = await db.articles.count_documents(query)
        cursor = db.articles.find(
            query,
            {"_id": 0, "content": 0},
        ).sort("created_at", -1).skip(skip).limit(limit)
        articles = await cursor.to_list(limit)
        return articles, build_pagination(total, page, limit)

    async def get_article(self, account_id: str, article_id: str) -> Optional[Dict[str, Any]]:
        db = self._get_db()
        return await db.articles.find_one(
            {"account_id": account_id, "article_id": article_id},
            {"_id": 0},
        )

    async def update_article(
        self,
        account_id: str,
        article_id: str,
        fields: Dict[str, Any],
    ) -> Optional[Dict[str, Any]]:
        """Apply edits to a stored article. Word count follows the content."""
        db = self._get_db()
        updates = {k: v for k, v in fields.items() if k in EDITABLE_FIELDS and v is not None}
        if "content" in updates:
            updates["word_count"] = count_words(updates["content"])
        updates["updated_at"] = datetime.now(timezone.utc)

        return await db.articles.find_one_and_update(
            {"account_id": account_id, "article_id": article_id},
            {"$set": updates},
            projection={"_id": 0},
            return_document=ReturnDocument.AFTER,
        )

    async def delete_article(self, account_id: str, article_id: str) -> bool:
        db = self._get_db()
        result = await db.articles.delete_one({"account_id": account_id, "article_id": article_id})
        return result.deleted_count > 0

    async def delete_articles(self, account_id: str, article_ids: List[str]) -> int:
        """Delete several articles; ids owned by other accounts are skipped."""
        db = self._get_db()
        result = await db.articles.delete_many(
            {"account_id": account_id, "article_id": {"$in": article_ids}}
        )
        logger.info(f"Deleted {result.deleted_count} articles for account {account_id}")
        return result.deleted_count


def count_words(content: str) -> int:
    return len(content.split())


def export_filename(title: str, extension: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", title.lower()).strip("-") or "article"
    return f"{slug}.{extension}"


def render_export(article: Dict[str, Any], export_format: str) -> Tuple[str, str, str]:
    """Return (body, media type, filename) for a downloadable article.

    Content is stored as Markdown. The HTML export is a standalone page that
    shows that Markdown as escaped preformatted text.
    """
    title = article.get("title") or ""
    content = article.get("content") or ""
    if export_format in MARKDOWN_FORMATS:
        return content, "text/markdown", export_filename(title, "md")

    body = (
        "<!DOCTYPE html>\n"
        "<html>\n<head>\n<meta charset=\"utf-8\">\n"
        f"<title>{html.escape(title)}</title>\n"
        "</head>\n<body>\n"
        f"<article style=\"white-space: pre-wrap\">{html.escape(content)}</article>\n"
        "</body>\n</html>\n"
    )
    return body, "text/html", export_filename(title, "html")


# Global service instance
article_service = ArticleService()
