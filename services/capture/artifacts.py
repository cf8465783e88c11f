"""Release transient capture artifacts from disk."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Awaitable, Callable

import aiofiles.os

LOGGER = logging.getLogger(__name__)

ArtifactReleaser = Callable[[Path], Awaitable[None]]


async def release_artifact(path: Path) -> None:
    """Delete a capture artifact. A file that is already gone is not an error."""
    try:
        await aiofiles.os.remove(path)
    except FileNotFoundError:
        LOGGER.debug("Artifact already removed: %s", path)
        return
    LOGGER.debug("Released artifact %s", path)
