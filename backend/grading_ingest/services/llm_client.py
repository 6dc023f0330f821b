"""
LLM Client Abstraction
Single entry point for the document-understanding call.

One blocking litellm completion per document: no retries, no provider fallback,
no streaming. Retry and timeout policy belong to the caller. Upstream failures
are mapped to typed errors that keep the original HTTP status:
  429 → RateLimitedError      (retry later)
  402 → QuotaExhaustedError   (credits exhausted)
  *   → ExtractionServiceError
"""
import logging
import mimetypes
from typing import Any, Optional

import litellm

from grading_ingest import config

logger = logging.getLogger("grading-llm")

# Suppress litellm verbose logging
litellm.set_verbose = False

DEFAULT_DOCUMENT_MIME = "application/pdf"


class ExtractionServiceError(Exception):
    """The multimodal extraction service failed. status_code is the upstream HTTP status, if any."""

    default_message = "AI processing failed"

    def __init__(self, detail: str, status_code: Optional[int] = None):
        self.detail = detail
        self.status_code = status_code
        super().__init__(self.user_message)

    @property
    def user_message(self) -> str:
        if self.status_code:
            return f"{self.default_message}: {self.status_code}"
        return self.default_message


class RateLimitedError(ExtractionServiceError):
    default_message = "Rate limit exceeded. Please try again in a moment."

    @property
    def user_message(self) -> str:
        return self.default_message


class QuotaExhaustedError(ExtractionServiceError):
    default_message = "AI credits exhausted. Please add credits to your workspace."

    @property
    def user_message(self) -> str:
        return self.default_message


def map_upstream_error(exc: Exception) -> ExtractionServiceError:
    """Translate a provider exception into one of the typed extraction errors."""
    status = getattr(exc, "status_code", None)
    if not isinstance(status, int):
        status = None
    detail = f"{type(exc).__name__}: {str(exc)[:200]}"

    if status == 429 or isinstance(exc, litellm.RateLimitError):
        return RateLimitedError(detail, status_code=429)
    if status == 402:
        return QuotaExhaustedError(detail, status_code=402)
    return ExtractionServiceError(detail, status_code=status)


def document_data_url(document_base64: str, file_name: str = "") -> str:
    """Inline data URL for the document; an existing data: prefix is kept as-is."""
    if document_base64.startswith("data:"):
        return document_base64
    mime, _ = mimetypes.guess_type(file_name or "")
    if not mime or not (mime.startswith("image/") or mime == "application/pdf"):
        mime = DEFAULT_DOCUMENT_MIME
    return f"data:{mime};base64,{document_base64}"


def extract_text_from_response(completion: Any) -> str:
    """
    Safely extract text content from a completion response.
    Content may be a plain string or a list of content blocks.
    """
    try:
        content = completion.choices[0].message.content
    except (AttributeError, IndexError, KeyError, TypeError):
        return ""

    if isinstance(content, list):
        text_parts = []
        for block in content:
            if isinstance(block, dict) and block.get("type") == "text":
                text_parts.append(block.get("text", ""))
            elif getattr(block, "type", None) == "text":
                text_parts.append(block.text)
        return "\n".join(text_parts)

    if isinstance(content, str):
        return content

    return str(content) if content else ""


def complete_with_document(
    document_base64: str,
    file_name: str,
    system_prompt: str,
    user_prompt: str,
    model: Optional[str] = None,
    temperature: Optional[float] = None,
    max_tokens: Optional[int] = None,
) -> str:
    """
    Vision-capable LLM call for scanned or vector drawings.
    Sends the document inline and returns the reply text.
    Raises ExtractionServiceError (or a subclass) on any upstream failure.
    """
    model = model or config.LLM_VISION_MODEL
    messages = [
        {"role": "system", "content": system_prompt},
        {
            "role": "user",
            "content": [
                {"type": "text", "text": user_prompt},
                {"type": "image_url", "image_url": {"url": document_data_url(document_base64, file_name)}},
            ],
        },
    ]

    try:
        response = litellm.completion(
            model=model,
            messages=messages,
            temperature=config.LLM_TEMPERATURE if temperature is None else temperature,
            max_tokens=max_tokens or config.LLM_MAX_TOKENS,
        )
    except Exception as e:
        mapped = map_upstream_error(e)
        logger.error(f"Vision LLM call failed ({model}): status={mapped.status_code} {mapped.detail}")
        raise mapped from e

    return extract_text_from_response(response)
