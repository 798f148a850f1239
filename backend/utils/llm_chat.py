"""
Gemini text generation for articles and title ideas.

Every call is bounded by LLM_TIMEOUT_SECONDS. Paid calls run inside a credit
reservation, so the bound must stay well below CREDIT_HOLD_TIMEOUT_MINUTES;
otherwise the reconciler can release the reservation while the model is
still writing.
"""
import asyncio
import logging
import os
from typing import Optional

import google.generativeai as genai

logger = logging.getLogger(__name__)

LLM_MODEL = os.environ.get("LLM_MODEL", "gemini-2.0-flash")
LLM_TIMEOUT_SECONDS = float(os.environ.get("LLM_TIMEOUT_SECONDS", "120"))


class LLMError(Exception):
    """The model call failed, timed out or came back empty."""


def _build_model(system_prompt: str, model_name: str):
    api_key = os.environ.get("LLM_API_KEY")
    if not api_key:
        raise LLMError("LLM_API_KEY is not configured")
    genai.configure(api_key=api_key)
    return genai.GenerativeModel(model_name, system_instruction=system_prompt)


def _response_text(response) -> str:
    # .text raises ValueError when the candidate was blocked or has no parts
    try:
        text = response.text if response is not None else ""
    except ValueError as e:
        raise LLMError(f"No text in model response: {e}")
    if not text or not text.strip():
        raise LLMError("Empty response from model")
    return text


async def chat(
    system_prompt: str,
    user_text: str,
    model: Optional[str] = None,
    timeout: Optional[float] = None,
) -> str:
    model_name = model or LLM_MODEL
    limit = LLM_TIMEOUT_SECONDS if timeout is None else timeout

    gemini = _build_model(system_prompt, model_name)
    try:
        response = await asyncio.wait_for(gemini.generate_content_async(user_text), timeout=limit)
    except asyncio.TimeoutError:
        logger.warning(f"{model_name} did not answer within {limit:g}s")
        raise LLMError(f"Model timed out after {limit:g}s")

    return _response_text(response)
