"""Source file storage for import jobs.

Provides a ``SourceStorage`` Protocol and a ``LocalSourceStorage``
implementation that keeps each uploaded CSV at ``{base_dir}/imports/{job_id}.csv``
until its job completes.  Failed jobs keep their file so they can be
restarted.
"""

import uuid
from pathlib import Path
from typing import Protocol

import aiofiles
import aiofiles.os


class SourceStorage(Protocol):
    """Abstract storage interface for import source files."""

    async def save(self, job_id: uuid.UUID, content: bytes) -> str:
        """Store the source of ``job_id`` and return its storage path."""
        ...

    async def load(self, stored_path: str) -> bytes:
        """Load a stored source.

        Raises:
            FileNotFoundError: If the file does not exist.
        """
        ...

    async def exists(self, stored_path: str) -> bool:
        """Whether the stored source is still present."""
        ...

    async def delete(self, stored_path: str) -> None:
        """Delete a stored source; missing files are ignored."""
        ...

    def local_path(self, stored_path: str) -> Path:
        """Filesystem path the parser can read."""
        ...


class LocalSourceStorage:
    """Local filesystem implementation of SourceStorage.

    Args:
        base_dir: The root directory for stored sources.
    """

    def __init__(self, base_dir: str | Path) -> None:
        self._base_dir = Path(base_dir)

    @property
    def base_dir(self) -> Path:
        return self._base_dir

    async def save(self, job_id: uuid.UUID, content: bytes) -> str:
        """Write the source bytes of a job.

        Args:
            job_id: Owning import job.
            content: Raw CSV bytes.

        Returns:
            Relative storage path (e.g., "imports/<job_id>.csv").
        """
        relative_path = f"imports/{job_id}.csv"
        full_path = self._base_dir / relative_path
        await aiofiles.os.makedirs(full_path.parent, exist_ok=True)
        async with aiofiles.open(full_path, "wb") as f:
            await f.write(content)
        return relative_path

    async def load(self, stored_path: str) -> bytes:
        full_path = self.local_path(stored_path)
        if not await aiofiles.os.path.exists(full_path):
            msg = f"File not found: {stored_path}"
            raise FileNotFoundError(msg)
        async with aiofiles.open(full_path, "rb") as f:
            return await f.read()

    async def exists(self, stored_path: str) -> bool:
        return await aiofiles.os.path.exists(self.local_path(stored_path))

    async def delete(self, stored_path: str) -> None:
        full_path = self.local_path(stored_path)
        if await aiofiles.os.path.exists(full_path):
            await aiofiles.os.remove(full_path)

    def local_path(self, stored_path: str) -> Path:
        return self._base_dir / stored_path
