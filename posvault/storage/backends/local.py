"""Local filesystem backend."""

import json
import re
import uuid
from pathlib import Path

import aiofiles
import aiofiles.os

from posvault.exceptions import FormatError
from posvault.models import LOCAL_BACKEND_ID, Envelope, UploadResult, parse_envelope
from posvault.storage.backends.base import StorageBackend
from posvault.storage.files import write_atomic

_UNSAFE_NAME_CHARS = re.compile(r"[^A-Za-z0-9._-]")


def safe_file_name(name: str) -> str:
    """Reduce ``name`` to a single safe path component ending in .json"""
    base = _UNSAFE_NAME_CHARS.sub("_", Path(name).name).strip("._")
    if not base:
        base = f"backup-{uuid.uuid4().hex}"
    if not base.endswith(".json"):
        base = f"{base}.json"
    return base


class LocalBackend(StorageBackend):
    """Stores envelopes as JSON files in a backup directory.

    Besides the upload/download contract it can materialize an envelope as a
    standalone file anywhere on disk (export) and ingest such a file back
    (import).
    """

    def __init__(self, directory: Path, backend_id: str = LOCAL_BACKEND_ID):
        super().__init__(backend_id)
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)

    def _path_for(self, file_id: str) -> Path:
        path = self.directory / safe_file_name(file_id)
        if path.resolve().parent != self.directory.resolve():
            raise ValueError(f"Backup id escapes the backup directory: {file_id}")
        return path

    async def upload(self, envelope: Envelope, name: str) -> UploadResult:
        path = self._path_for(name)
        if await aiofiles.os.path.exists(path):
            path = self._path_for(f"{path.stem}-{uuid.uuid4().hex[:8]}")

        await write_atomic(path, json.dumps(envelope.to_wire(), indent=2))

        self.logger.info("Backup written", backend=self.backend_id, path=str(path))
        return UploadResult(id=path.name, locator=str(path))

    async def download(self, file_id: str) -> Envelope:
        return await self.import_from_file(self._path_for(file_id))

    async def delete(self, file_id: str) -> None:
        path = self._path_for(file_id)
        if await aiofiles.os.path.exists(path):
            await aiofiles.os.remove(path)
            self.logger.info("Backup file removed", path=str(path))

    async def list_files(self) -> list[str]:
        """Names of the envelopes currently in the backup directory"""
        return sorted(
            p.name
            for p in self.directory.iterdir()
            if p.is_file() and p.suffix == ".json" and not p.name.startswith(".")
        )

    async def export_to_file(self, envelope: Envelope, path: Path) -> Path:
        """Materialize ``envelope`` as a downloadable JSON file at ``path``."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        await write_atomic(path, json.dumps(envelope.to_wire(), indent=2))
        self.logger.info("Backup exported", path=str(path))
        return path

    async def import_from_file(self, path: Path) -> Envelope:
        """Ingest an envelope file.

        Raises:
            FileNotFoundError: ``path`` does not exist
            FormatError: the file is not a backup envelope
        """
        path = Path(path)
        if not await aiofiles.os.path.exists(path):
            raise FileNotFoundError(f"Backup file not found: {path}")

        async with aiofiles.open(path, encoding="utf-8") as f:
            content = await f.read()

        try:
            raw = json.loads(content)
        except json.JSONDecodeError as e:
            raise FormatError("Invalid backup file format") from e
        return parse_envelope(raw)
