"""Prompt helpers for text extraction and answer generation."""

from __future__ import annotations


def extraction_prompt() -> str:
    """Return the literal-transcription instruction sent with every image."""
    return (
        "You are an OCR engine. Your task is to extract all text from the provided image with high accuracy. "
        "Preserve all formatting and code segments exactly as they appear. "
        "Ignore any watermarks or extraneous visual elements. "
        "Return only the extracted text, with no additional commentary."
    )


def answer_system_prompt() -> str:
    """Return the system instruction for the answer model."""
    return "You are a highly accurate DSA and engineering questions answering bot."


def answer_user_prompt(combined_text: str) -> str:
    """Return the user message embedding the extracted text."""
    return (
        f'The extracted text from the images is: "{combined_text}". '
        "Please provide the answer or code or anything relevant to solve this question. "
        "No extra text, be very straight forward about the answer, no explanation or stuff, only the answer"
    )
