"""Helpers to parse Responses API outputs."""

from typing import Any, Dict, Optional


def _field(obj: Any, name: str, default: Any = None) -> Any:
    if isinstance(obj, dict):
        return obj.get(name, default)
    return getattr(obj, name, default)


def extract_text(response: Any) -> str:
    """Return the concatenated ``output_text`` parts of a response."""
    direct = getattr(response, "output_text", None)
    if isinstance(direct, str) and direct:
        return direct
    parts = []
    for item in _field(response, "output", None) or []:
        if _field(item, "type") != "message":
            continue
        for content in _field(item, "content", None) or []:
            if _field(content, "type") == "output_text":
                parts.append(_field(content, "text", "") or "")
    return "".join(parts)


def extract_usage(response: Any) -> Dict[str, Optional[int]]:
    """Return token usage information from the response, if present."""
    usage = getattr(response, "usage", None)
    return {
        "input_tokens": getattr(usage, "input_tokens", None) if usage else None,
        "output_tokens": getattr(usage, "output_tokens", None) if usage else None,
    }
