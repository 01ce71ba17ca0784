import logging
import os
import random
import time
from pathlib import Path
from typing import Iterable, Optional

from fastapi import UploadFile

from library_api.config import settings
from library_api.errors import BadRequest, PayloadTooLarge

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024


class UploadStore:
    """Saves uploaded images to disk under generated names.

    Files are served back from ``/uploads/<name>``; the store only writes
    them. Anything larger than ``max_bytes`` is rejected and the partial
    file removed.
    """

    def __init__(self, directory: Optional[str] = None, max_bytes: Optional[int] = None,
                 allowed_extensions: Optional[Iterable[str]] = None) -> None:
        self.directory = Path(directory or settings.upload_dir)
        self.max_bytes = max_bytes if max_bytes is not None else settings.max_upload_size
        self.allowed_extensions = {ext.lower() for ext in (allowed_extensions or settings.allowed_image_extensions)}

    def ensure_directory(self) -> Path:
        self.directory.mkdir(parents=True, exist_ok=True)
        return self.directory

    @staticmethod
    def generate_name(original_name: str) -> str:
        """``<epoch-ms>-<random><ext>``, keeping the client's extension."""
        suffix = Path(original_name).suffix.lower()
        return f"{int(time.time() * 1000)}-{random.randint(0, 10**9)}{suffix}"

    async def save(self, upload: Optional[UploadFile]) -> str:
        """Persist an upload and return its public path."""
        if upload is None or not upload.filename:
            raise BadRequest("No file uploaded")

        extension = Path(upload.filename).suffix.lower()
        if extension not in self.allowed_extensions:
            raise BadRequest(f"Unsupported file type: {extension or 'none'}")

        name = self.generate_name(upload.filename)
        target = self.ensure_directory() / name

        written = 0
        try:
            with open(target, "wb") as out:
                while True:
                    chunk = await upload.read(CHUNK_SIZE)
                    if not chunk:
                        break
                    written += len(chunk)
                    if written > self.max_bytes:
                        raise PayloadTooLarge(f"File too large (limit {self.max_bytes} bytes)")
                    out.write(chunk)
        except PayloadTooLarge:
            os.remove(target)
            logger.warning(f"Rejected upload {upload.filename}: over {self.max_bytes} bytes")
            raise
        finally:
            await upload.close()

        logger.info(f"Stored upload {upload.filename} as {name} ({written} bytes)")
        return f"/uploads/{name}"
