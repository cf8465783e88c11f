"""Answer generation over extracted screenshot text using the OpenAI Responses API.

One request per call: a fixed system instruction plus a user message that
embeds all extracted text, asking for a terse answer with no explanation.
"""

import logging
import time
from typing import Any

from openai import AsyncOpenAI

from models.errors import AnswerFailure
from services.openai.prompts import answer_system_prompt, answer_user_prompt
from services.openai.response_parser import extract_text

LOGGER = logging.getLogger(__name__)

ANSWER_DISABLED_TEXT = "Answer generation is disabled in feature flags"
FAILED_ANSWER_TEXT = "Failed to get the answer."


class AnswerService:
    """Ask the answer model to solve whatever the extracted text describes."""

    def __init__(self, client: AsyncOpenAI, *, enabled: bool = True, model: str = "gpt-4o") -> None:
        if enabled and client is None:
            raise ValueError("OpenAI client must be provided.")
        self.client = client
        self.enabled = enabled
        self.model = model

    async def generate_answer(self, combined_text: str) -> str:
        """Return the model's answer for ``combined_text``.

        Raises:
            AnswerFailure: If the request fails or the response carries no text.
        """
        if not self.enabled:
            LOGGER.debug("Answer generation is disabled; returning sentinel")
            return ANSWER_DISABLED_TEXT

        LOGGER.info("Fetching answer for %d chars of extracted text", len(combined_text))
        start = time.time()
        response = await self._create_response(combined_text)
        answer = extract_text(response)
        if not answer:
            raise AnswerFailure("Answer service returned an empty response")
        LOGGER.info("Answer received in %.3fs", time.time() - start)
        return answer

    async def _create_response(self, combined_text: str) -> Any:
        try:
            return await self.client.responses.create(
                model=self.model,
                input=[
                    {
                        "type": "message",
                        "role": "system",
                        "content": [{"type": "input_text", "text": answer_system_prompt()}],
                    },
                    {
                        "type": "message",
                        "role": "user",
                        "content": [{"type": "input_text", "text": answer_user_prompt(combined_text)}],
                    },
                ],
                temperature=0,
                max_output_tokens=2000,
            )
        except Exception as exc:
            LOGGER.error("Answer Responses API error: %s", exc)
            raise AnswerFailure(str(exc)) from exc
