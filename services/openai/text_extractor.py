"""Description: Image-to-text extraction using OpenAI file uploads and the Responses API."""

import logging
import time
from pathlib import Path
from typing import Any, Dict, List

import aiofiles
from openai import AsyncOpenAI

from models.errors import ExtractionFailure
from services.openai.prompts import extraction_prompt
from services.openai.response_parser import extract_text, extract_usage

LOGGER = logging.getLogger(__name__)

EXTRACTION_DISABLED_TEXT = "Text extraction is disabled in feature flags"
IMAGE_MIME_TYPE = "image/jpeg"


class TextExtractionService:
    """Transcribe the text visible in a screenshot."""

    def __init__(self, client: AsyncOpenAI, *, enabled: bool = True, model: str = "gpt-4o-mini") -> None:
        """Initialize the extractor with an OpenAI async client.

        A client is only required when extraction is enabled.
        """
        if enabled and client is None:
            raise ValueError("OpenAI client must be provided.")
        self.client = client
        self.enabled = enabled
        self.model = model
        self.prompt = extraction_prompt()

    async def extract_text(self, artifact: Path) -> str:
        """Return the raw text transcribed from ``artifact``.

        Raises:
            ExtractionFailure: If the upload or the model call fails, or no text comes back.
        """
        if not self.enabled:
            LOGGER.debug("Text extraction is disabled; returning sentinel for %s", artifact)
            return EXTRACTION_DISABLED_TEXT

        start_time = time.time()
        file_id = await self._upload(Path(artifact))
        try:
            response = await self._create_response(file_id)
        finally:
            await self._discard_upload(file_id)

        text = extract_text(response)
        if not text:
            raise ExtractionFailure(f"Extraction service returned no text for {Path(artifact).name}")
        usage = extract_usage(response)
        LOGGER.info(
            "Extracted %d chars from %s in %.3fs (input_tokens=%s output_tokens=%s)",
            len(text),
            Path(artifact).name,
            time.time() - start_time,
            usage["input_tokens"],
            usage["output_tokens"],
        )
        return text

    async def _upload(self, artifact: Path) -> str:
        """Upload the screenshot and return the remote file id."""
        LOGGER.debug("Uploading file: %s", artifact)
        try:
            async with aiofiles.open(artifact, "rb") as fh:
                data = await fh.read()
            uploaded = await self.client.files.create(
                file=(artifact.name, data, IMAGE_MIME_TYPE),
                purpose="vision",
            )
        except Exception as exc:
            LOGGER.error("Error uploading %s to the extraction service: %s", artifact, exc)
            raise ExtractionFailure(f"Failed to upload {artifact.name}: {exc}") from exc
        LOGGER.debug("Uploaded %s as %s", artifact.name, uploaded.id)
        return uploaded.id

    def _build_inputs(self, file_id: str) -> List[Dict[str, Any]]:
        return [
            {
                "type": "message",
                "role": "user",
                "content": [
                    {"type": "input_image", "file_id": file_id, "detail": "high"},
                    {"type": "input_text", "text": self.prompt},
                ],
            }
        ]

    async def _create_response(self, file_id: str) -> Any:
        """Send the single-turn transcription request."""
        try:
            return await self.client.responses.create(
                model=self.model,
                input=self._build_inputs(file_id),
                temperature=0.2,
                top_p=1,
                max_output_tokens=4096,
            )
        except Exception as exc:
            LOGGER.error("Error during extraction Responses API call: %s", exc)
            raise ExtractionFailure(f"Extraction service error: {exc}") from exc

    async def _discard_upload(self, file_id: str) -> None:
        """Remove the uploaded file; a failure here only warrants a warning."""
        try:
            await self.client.files.delete(file_id)
        except Exception as exc:
            LOGGER.warning("Could not delete uploaded file %s: %s", file_id, exc)
