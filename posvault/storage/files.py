"""File helpers shared by the file-backed stores."""

import os
import uuid
from pathlib import Path

import aiofiles
import aiofiles.os


async def write_atomic(path: Path, content: str) -> None:
    """Write ``content`` to a temporary sibling, then move it over ``path``.

    Readers see either the previous document or the new one, never a mix.
    """
    tmp_path = path.with_name(f".{path.name}.{uuid.uuid4().hex}.tmp")
    try:
        async with aiofiles.open(tmp_path, "w", encoding="utf-8") as f:
            await f.write(content)
            await f.flush()
            os.fsync(f.fileno())
        await aiofiles.os.replace(tmp_path, path)
    except BaseException:
        if await aiofiles.os.path.exists(tmp_path):
            await aiofiles.os.remove(tmp_path)
        raise
