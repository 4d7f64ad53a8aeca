from __future__ import annotations
import asyncio
import io
import logging
import os
import uuid
from dataclasses import dataclass
from typing import Optional

from PIL import Image, UnidentifiedImageError

from medtrack.config import UPLOAD_DIR, MAX_UPLOAD_BYTES, IMAGE_MAX_SIDE
from medtrack.errors import InvalidField

logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = {".jpeg", ".jpg", ".png", ".gif", ".webp"}


@dataclass
class ImageUpload:
    data: bytes
    filename: str


class MediaStore:
    """
    Medicine pictures on local disk. `save` returns the file name stored on
    the medicine row; the HTTP layer serves the directory under /uploads.
    """

    def __init__(self, directory: str = UPLOAD_DIR, max_side: int = IMAGE_MAX_SIDE,
                 max_bytes: int = MAX_UPLOAD_BYTES):
        self.directory = directory
        self.max_side = max_side
        self.max_bytes = max_bytes

    def path_for(self, reference: str) -> str:
        return os.path.join(self.directory, os.path.basename(reference))

    def _compress(self, data: bytes, ext: str) -> bytes:
        try:
            image = Image.open(io.BytesIO(data))
            image.load()
        except (UnidentifiedImageError, OSError):
            raise InvalidField("Uploaded file is not a readable image.")

        # fit inside max_side x max_side, never enlarge
        image.thumbnail((self.max_side, self.max_side))
        out = io.BytesIO()
        if ext == ".png":
            image.save(out, format="PNG", optimize=True)
        else:
            if image.mode not in ("RGB", "L"):
                image = image.convert("RGB")
            image.save(out, format="JPEG", quality=80, progressive=True)
        return out.getvalue()

    def _write(self, filename: str, payload: bytes) -> None:
        os.makedirs(self.directory, exist_ok=True)
        with open(os.path.join(self.directory, filename), "wb") as f:
            f.write(payload)

    async def save(self, data: bytes, original_name: str) -> str:
        ext = os.path.splitext(original_name or "")[1].lower()
        if ext not in ALLOWED_EXTENSIONS:
            raise InvalidField(
                "Invalid file type. Only image files are allowed (jpeg, jpg, png, gif, webp)"
            )
        if not data:
            raise InvalidField("Uploaded image is empty.")
        if len(data) > self.max_bytes:
            raise InvalidField("Uploaded image is too large.")

        payload = await asyncio.to_thread(self._compress, data, ext)
        # everything but PNG is re-encoded as JPEG
        filename = f"{uuid.uuid4()}{'.png' if ext == '.png' else '.jpg'}"
        await asyncio.to_thread(self._write, filename, payload)
        logger.info("Saved image %s (%d bytes from %s)", filename, len(payload), original_name)
        return filename

    async def delete(self, reference: Optional[str]) -> None:
        """Best-effort: a missing or locked file is logged, never raised."""
        if not reference:
            return
        try:
            await asyncio.to_thread(os.remove, self.path_for(reference))
        except OSError as e:
            logger.warning("Could not delete image %s: %s", reference, e)


media_store = MediaStore()


def get_media_store() -> MediaStore:
    return media_store
