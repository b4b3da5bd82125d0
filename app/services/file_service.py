import base64
import binascii
import hmac
import io
import logging
import os
import re
import time
from datetime import date, datetime, timezone
from typing import Optional, Tuple
from urllib.parse import urlencode

import aiofiles
from PIL import Image, UnidentifiedImageError

from app.core.config import MAX_SELFIE_SIZE, PUBLIC_BASE_URL, SIGNED_URL_TTL_SECONDS, STORAGE_PATH
from app.core.exceptions import ValidationFailed
from app.core.security import sign_value

logger = logging.getLogger(__name__)

DATA_URL_PREFIX = re.compile(r"^data:image/[a-zA-Z+.-]+;base64,")
MAX_SELFIE_DIMENSIONS = (800, 800)


class StorageError(Exception):
    """Object store write failed"""


def decode_selfie(selfie: str) -> bytes:
    """
    Base64 (optionally a data URL) selfie -> raw bytes.

    Raises ValidationFailed, so it is called before any state mutation.
    """
    if not selfie or not selfie.strip():
        raise ValidationFailed("Selfie is required")
    payload = DATA_URL_PREFIX.sub("", selfie.strip())
    try:
        raw = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError):
        raise ValidationFailed("Selfie must be a base64 encoded image")
    if not raw:
        raise ValidationFailed("Selfie is empty")
    if len(raw) > MAX_SELFIE_SIZE:
        raise ValidationFailed(f"Selfie is too large. Maximum size: {MAX_SELFIE_SIZE // (1024*1024)}MB")
    try:
        with Image.open(io.BytesIO(raw)) as image:
            image.verify()
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, SyntaxError, ValueError):
        raise ValidationFailed("Selfie is not a readable image")
    return raw


def selfie_object_path(record_id: str, attendance_date: date, kind: str, taken_at: datetime) -> str:
    """Storage key: attendance/YYYY/MM/DD/<record id>/<kind>-<ms>.jpg"""
    millis = int(taken_at.replace(tzinfo=timezone.utc).timestamp() * 1000)
    return (f"attendance/{attendance_date.year:04d}/{attendance_date.month:02d}/"
            f"{attendance_date.day:02d}/{record_id}/{kind}-{millis}.jpg")


class SelfieStorage:
    """Private selfie store on the local filesystem with signed read URLs"""

    def __init__(self, root: str):
        self.root = root

    def full_path(self, object_path: str) -> Optional[str]:
        """Resolve a storage key inside the root; None for anything escaping it"""
        if not object_path or object_path.startswith("/") or "\\" in object_path:
            return None
        root = os.path.realpath(self.root)
        candidate = os.path.realpath(os.path.join(root, object_path))
        if os.path.commonpath([root, candidate]) != root:
            return None
        return candidate

    async def save_selfie(self, object_path: str, raw: bytes) -> str:
        """
        Normalise the selfie to JPEG and write it under ``object_path``.

        Args:
            object_path: storage key from selfie_object_path
            raw: decoded image bytes

        Returns:
            The storage key
        """
        file_path = self.full_path(object_path)
        if file_path is None:
            raise StorageError(f"Invalid storage path: {object_path}")

        try:
            image = Image.open(io.BytesIO(raw))

            if image.size[0] > MAX_SELFIE_DIMENSIONS[0] or image.size[1] > MAX_SELFIE_DIMENSIONS[1]:
                image.thumbnail(MAX_SELFIE_DIMENSIONS, Image.Resampling.LANCZOS)

            # RGBA formatini RGB ga o'girish
            if image.mode in ("RGBA", "P"):
                image = image.convert("RGBA")
                background = Image.new("RGB", image.size, (255, 255, 255))
                background.paste(image, mask=image.split()[-1])
                image = background
            elif image.mode != "RGB":
                image = image.convert("RGB")

            buffer = io.BytesIO()
            image.save(buffer, "JPEG", quality=85, optimize=True)
        except (UnidentifiedImageError, OSError, ValueError) as e:
            raise StorageError(f"Selfie could not be processed: {e}") from e

        try:
            os.makedirs(os.path.dirname(file_path), exist_ok=True)
            async with aiofiles.open(file_path, "wb") as f:
                await f.write(buffer.getvalue())
        except OSError as e:
            raise StorageError(f"Selfie could not be written: {e}") from e

        logger.info("Stored selfie %s (%d bytes)", object_path, buffer.tell())
        return object_path

    def create_signed_url(self, object_path: str, expires_in: int = SIGNED_URL_TTL_SECONDS,
                          now: Optional[float] = None) -> Tuple[str, datetime]:
        """Time-limited read URL for a stored selfie; expiry counts from this call"""
        issued_at = time.time() if now is None else now
        expires = int(issued_at) + expires_in
        signature = sign_value(f"{object_path}:{expires}")
        query = urlencode({"path": object_path, "expires": expires, "signature": signature})
        url = f"{PUBLIC_BASE_URL}/attendance/image/raw?{query}"
        return url, datetime.fromtimestamp(expires, tz=timezone.utc)

    def verify_signature(self, object_path: str, expires: int, signature: str,
                         now: Optional[float] = None) -> bool:
        current = time.time() if now is None else now
        if expires < current:
            return False
        expected = sign_value(f"{object_path}:{expires}")
        return hmac.compare_digest(expected, signature or "")


# Global storage instance
selfie_storage = SelfieStorage(STORAGE_PATH)
