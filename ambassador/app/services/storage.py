"""
Blob store for uploaded story screenshots.

Contract: ``store(content) -> url`` and ``read(url) -> bytes``. The local
implementation writes WebP files under UPLOAD_DIR and returns URLs under
UPLOAD_URL_PREFIX, which main.py serves as static files.
"""
import uuid
from pathlib import Path

from ambassador.app.core.exceptions import NotFoundError, ValidationError
from ambassador.app.core.image_convert import convert_screenshot_to_webp
from ambassador.app.core.logging import get_logger

logger = get_logger(__name__)


class BlobStore:
    async def store(self, content: bytes) -> str:
        raise NotImplementedError

    async def read(self, url: str) -> bytes:
        raise NotImplementedError


class LocalBlobStore(BlobStore):
    def __init__(self, directory: str, url_prefix: str = "/uploads", max_bytes: int = 10 * 1024 * 1024):
        self.directory = Path(directory)
        self.url_prefix = url_prefix.rstrip("/")
        self.max_bytes = max_bytes

    async def store(self, content: bytes) -> str:
        if not content:
            raise ValidationError("Empty file", {"file": "File is empty"})
        if len(content) > self.max_bytes:
            raise ValidationError("File too large", {"file": f"Maximum size is {self.max_bytes} bytes"})
        try:
            webp = convert_screenshot_to_webp(content)
        except ValueError as e:
            raise ValidationError(str(e), {"file": str(e)})

        self.directory.mkdir(parents=True, exist_ok=True)
        name = f"{uuid.uuid4().hex}.webp"
        (self.directory / name).write_bytes(webp)
        logger.info("Screenshot stored", file=name, size=len(webp))
        return f"{self.url_prefix}/{name}"

    async def read(self, url: str) -> bytes:
        if not url.startswith(self.url_prefix + "/"):
            raise NotFoundError("File not found")
        name = url[len(self.url_prefix) + 1:]
        # Flat directory, no sub-paths
        if "/" in name or "\\" in name or name.startswith("."):
            raise NotFoundError("File not found")
        path = self.directory / name
        if not path.is_file():
            raise NotFoundError("File not found")
        return path.read_bytes()
