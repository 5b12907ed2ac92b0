# extraction_engine.py
from __future__ import annotations

import asyncio
import logging
import mimetypes
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import google.generativeai as genai
from PIL import Image, UnidentifiedImageError
from pydantic import ValidationError
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from .config import MAX_TOKENS, MODEL, RETRY_ATTEMPTS, TEMPERATURE, TIMEOUT, configure_gemini
from .errors import ParseError, ServiceError
from .json_extract import parse_json_array
from .logging_utils import log_event
from .models import FlightLogEntry, PageExtractionResult
from .prompts import EXTRACTION_PROMPT, RESPONSE_SCHEMA

logger = logging.getLogger("flightlog.extraction_engine")

SYSTEM_INSTRUCTION = (
    "You are a flight log transcription expert. "
    "You read scanned handwritten aircraft logbooks and always return valid JSON."
)

_EXTENSION_MIME = {
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".tif": "image/tiff",
    ".tiff": "image/tiff",
    ".webp": "image/webp",
}


def detect_mime_type(image_path: Path) -> str:
    try:
        with Image.open(image_path) as img:
            mime = Image.MIME.get(img.format or "")
        if mime:
            return mime
    except (UnidentifiedImageError, OSError):
        pass
    return _EXTENSION_MIME.get(image_path.suffix.lower()) or mimetypes.guess_type(image_path.name)[0] or "image/png"


def parse_entries(text: str, page_number: int) -> List[FlightLogEntry]:
    """
    Turn model text into entries tagged with ``source_page``.

    Raises ParseError when no JSON array can be recovered. Items that are not
    objects or fail validation are skipped; the rest of the page survives.
    """
    items = parse_json_array(text)

    entries: List[FlightLogEntry] = []
    for idx, item in enumerate(items):
        if not isinstance(item, dict):
            log_event(logger, "entry_skipped", level=logging.WARNING, page=page_number, index=idx, reason="not an object")
            continue
        item = {k: v for k, v in item.items() if k != "source_page"}
        try:
            entry = FlightLogEntry.model_validate(item)
        except ValidationError as e:
            log_event(logger, "entry_skipped", level=logging.WARNING, page=page_number, index=idx, reason=str(e))
            continue
        entry.source_page = page_number
        entries.append(entry)
    return entries


class VisionAgent:
    """One Gemini request per page image; failures come back as data, never raised."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        *,
        model: str = MODEL,
        max_tokens: int = MAX_TOKENS,
        temperature: float = TEMPERATURE,
        timeout: float = TIMEOUT,
        retry_attempts: int = RETRY_ATTEMPTS,
        client: Optional[Any] = None,
    ) -> None:
        if api_key:
            configure_gemini(api_key)
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.timeout = timeout
        self.retry_attempts = max(1, retry_attempts)
        self._client = client or genai.GenerativeModel(model, system_instruction=SYSTEM_INSTRUCTION)

    # ---------------- core helpers ----------------

    def _create_content(self, image_path: Path) -> List[Any]:
        image_part = {
            "mime_type": detect_mime_type(image_path),
            "data": image_path.read_bytes(),
        }
        return [EXTRACTION_PROMPT, image_part]

    def _generation_config(self) -> Any:
        return genai.types.GenerationConfig(
            temperature=self.temperature,
            max_output_tokens=self.max_tokens,
            response_mime_type="application/json",
            response_schema=RESPONSE_SCHEMA,
        )

    @staticmethod
    def _response_text(response: Any) -> str:
        try:
            return response.text or ""
        except ValueError:
            # Blocked or empty candidate: the SDK refuses .text
            return ""

    def _record_usage(self, response: Any, page_number: int) -> None:
        usage = getattr(response, "usage_metadata", None)
        if usage is None:
            return
        log_event(
            logger,
            "gemini_usage",
            page=page_number,
            input_tokens=getattr(usage, "prompt_token_count", None),
            output_tokens=getattr(usage, "candidates_token_count", None),
            total_tokens=getattr(usage, "total_token_count", None),
        )

    async def _generate(self, content: List[Any], page_number: int) -> str:
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.retry_attempts),
                wait=wait_exponential(multiplier=1, min=4, max=10),
                retry=retry_if_exception_type(Exception),
                reraise=True,
            ):
                with attempt:
                    log_event(
                        logger,
                        "gemini_call_started",
                        model=self.model,
                        page=page_number,
                        attempt=attempt.retry_state.attempt_number,
                    )
                    response = await asyncio.wait_for(
                        self._client.generate_content_async(
                            content,
                            generation_config=self._generation_config(),
                            request_options={"timeout": self.timeout},
                        ),
                        timeout=self.timeout,
                    )
        except Exception as e:
            raise ServiceError(f"Gemini API error: {type(e).__name__}: {e}", page_number) from e

        self._record_usage(response, page_number)
        return self._response_text(response)

    # ---------------- public API ----------------

    async def extract(self, image_path: Union[str, Path], page_number: int) -> PageExtractionResult:
        path = Path(image_path)

        try:
            content = self._create_content(path)
        except OSError as e:
            log_event(logger, "page_extraction_failed", level=logging.ERROR, page=page_number, error=str(e))
            return PageExtractionResult(
                page_number=page_number,
                image_path=str(path),
                error=f"Failed to read image file: {e}",
            )

        try:
            text = await self._generate(content, page_number)
        except ServiceError as e:
            log_event(logger, "page_extraction_failed", level=logging.ERROR, page=page_number, error=str(e))
            return PageExtractionResult(page_number=page_number, image_path=str(path), error=str(e))

        try:
            entries = parse_entries(text, page_number)
        except ParseError as e:
            # Degraded, not failed: keep the raw text for diagnosis
            log_event(
                logger,
                "page_parse_failed",
                level=logging.WARNING,
                page=page_number,
                error=str(e),
                raw_preview=text[:500],
            )
            entries = []

        log_event(logger, "page_extraction_completed", page=page_number, entries=len(entries))
        return PageExtractionResult(
            page_number=page_number,
            image_path=str(path),
            entries=entries,
            raw_response=text,
        )
