"""Image preparation: validation, compression, encoding and URL loading.

Nothing here touches the remote hosting or analysis services. Decoding and
re-encoding go through Pillow; fetching a remote image goes through httpx.
"""
import base64
import io
import logging
import mimetypes
import os
import tempfile
import time
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional
from urllib.parse import urlparse

from httpx import AsyncClient, HTTPError
from PIL import Image

from img2prompt.constants import (
    COMPRESS_MAX_DIMENSION,
    COMPRESS_MAX_SIZE_MB,
    COMPRESS_MIN_QUALITY,
    COMPRESS_QUALITY,
    COMPRESS_QUALITY_STEP,
    COMPRESS_SCALE_STEP,
    COMPRESS_THRESHOLD_MB,
    DEFAULT_IMAGE_NAME,
    IMAGE_ID_PREFIX,
    MAX_FILE_SIZE,
    MEGABYTE,
    MSG_COMPRESSION_FAILED,
    MSG_DIMENSIONS_FAILED,
    MSG_FILE_TOO_LARGE,
    MSG_INVALID_URL,
    MSG_NETWORK_ERROR,
    MSG_UNSUPPORTED_TYPE,
    MSG_URL_HTTP_ERROR,
    MSG_URL_NOT_IMAGE,
    REQUEST_TIMEOUT,
    SUPPORTED_IMAGE_TYPES,
)
from img2prompt.errors import (
    CompressionError,
    ImageLoadError,
    ImageReadError,
    ImageValidationError,
    NetworkError,
)
from img2prompt.models import (
    Dimensions,
    ImageFile,
    ImageMetadata,
    ValidationResult,
    format_bytes,
    utcnow,
)

logger = logging.getLogger(__name__)

_PIL_FORMATS = {
    "image/jpeg": "JPEG",
    "image/jpg": "JPEG",
    "image/png": "PNG",
    "image/webp": "WEBP",
    "image/gif": "GIF",
}
_MIME_TYPES = {"JPEG": "image/jpeg", "PNG": "image/png", "WEBP": "image/webp", "GIF": "image/gif"}
_LOSSY_FORMATS = ("JPEG", "WEBP")
_WHITE = (255, 255, 255)


# ── ids / urls ────────────────────────────────────────────────────────────────


def generate_id() -> str:
    return f"{IMAGE_ID_PREFIX}_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


def validate_image_url(url: str) -> bool:
    parsed = urlparse(url.strip())
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def image_name_from_url(url: str) -> str:
    return urlparse(url).path.split("/")[-1] or DEFAULT_IMAGE_NAME


# ── validation ────────────────────────────────────────────────────────────────


def validate(image: ImageFile) -> ValidationResult:
    match (image.mime_type in SUPPORTED_IMAGE_TYPES, image.size < MAX_FILE_SIZE):
        case (False, _):
            return ValidationResult(ok=False, error=MSG_UNSUPPORTED_TYPE % ", ".join(SUPPORTED_IMAGE_TYPES))
        case (True, False):
            return ValidationResult(ok=False, error=MSG_FILE_TOO_LARGE % format_bytes(MAX_FILE_SIZE))
        case _:
            return ValidationResult(ok=True)


def should_compress(image: ImageFile, threshold_mb: float = COMPRESS_THRESHOLD_MB) -> bool:
    return image.size > threshold_mb * MEGABYTE


# ── encoding ──────────────────────────────────────────────────────────────────


def to_base64(image: ImageFile) -> str:
    """Base64 text of the raw bytes, without any ``data:`` prefix."""
    return base64.b64encode(image.data).decode("ascii")


def strip_data_url_prefix(text: str) -> str:
    match text.startswith("data:") and "," in text:
        case True:
            return text.split(",", 1)[1]
        case False:
            return text


def to_data_url(image: ImageFile) -> str:
    return f"data:{image.mime_type};base64,{to_base64(image)}"


# ── decoding ──────────────────────────────────────────────────────────────────


def dimensions(image: ImageFile) -> Dimensions:
    try:
        with Image.open(io.BytesIO(image.data)) as img:
            width, height = img.size
    except Exception as exc:
        raise ImageReadError(MSG_DIMENSIONS_FAILED) from exc
    return Dimensions(width=width, height=height)


def metadata(image: ImageFile) -> ImageMetadata:
    try:
        dims: Optional[Dimensions] = dimensions(image)
    except ImageReadError:
        dims = None
    return ImageMetadata(
        name=image.name,
        size=image.size,
        type=image.mime_type,
        last_modified=image.last_modified,
        dimensions=dims,
    )


# ── compression ───────────────────────────────────────────────────────────────


def _flatten(src: Image.Image, fmt: str) -> Image.Image:
    """Bring the frame into a mode the target encoder accepts."""
    match fmt:
        case "JPEG":
            rgba = src.convert("RGBA")
            background = Image.new("RGB", rgba.size, _WHITE)
            background.paste(rgba, mask=rgba.split()[3])
            return background
        case "GIF":
            return src.copy()
        case _:
            return src.convert("RGBA") if src.mode in ("P", "LA", "PA") else src.copy()


def _encode(frame: Image.Image, fmt: str, quality: float) -> bytes:
    buffer = io.BytesIO()
    match fmt in _LOSSY_FORMATS:
        case True:
            frame.save(buffer, format=fmt, quality=round(quality * 100), optimize=True)
        case False:
            frame.save(buffer, format=fmt, optimize=True)
    return buffer.getvalue()


def _encode_within(frame: Image.Image, fmt: str, quality: float, max_bytes: int) -> bytes:
    # lower quality first (lossy formats only), then shrink until it fits
    data = _encode(frame, fmt, quality)
    while len(data) > max_bytes and max(frame.size) > 1:
        match fmt in _LOSSY_FORMATS and round(quality - COMPRESS_QUALITY_STEP, 2) >= COMPRESS_MIN_QUALITY:
            case True:
                quality = round(quality - COMPRESS_QUALITY_STEP, 2)
            case False:
                width, height = frame.size
                frame = frame.resize(
                    (max(1, int(width * COMPRESS_SCALE_STEP)), max(1, int(height * COMPRESS_SCALE_STEP))),
                    Image.LANCZOS,
                )
        data = _encode(frame, fmt, quality)
    return data


def compress(
    image: ImageFile,
    quality: float = COMPRESS_QUALITY,
    max_size_mb: float = COMPRESS_MAX_SIZE_MB,
    max_dimension: int = COMPRESS_MAX_DIMENSION,
) -> ImageFile:
    """Re-encode ``image`` in its own format within ``max_size_mb`` and ``max_dimension``.

    CPU bound; async callers should run it in a worker thread.
    """
    fmt = _PIL_FORMATS.get(image.mime_type, "JPEG")
    try:
        with Image.open(io.BytesIO(image.data)) as src:
            frame = _flatten(src, fmt)
        frame.thumbnail((max_dimension, max_dimension), Image.LANCZOS)
        data = _encode_within(frame, fmt, quality, int(max_size_mb * MEGABYTE))
    except Exception as exc:
        logger.error("Image compression failed for %s: %s", image.name, exc)
        raise CompressionError(MSG_COMPRESSION_FAILED) from exc
    return ImageFile(name=image.name, data=data, mime_type=_MIME_TYPES[fmt], last_modified=utcnow())


# ── loading ───────────────────────────────────────────────────────────────────


def load_from_path(path: Path) -> ImageFile:
    mime_type, _ = mimetypes.guess_type(path.name)
    stat = path.stat()
    return ImageFile(
        name=path.name,
        data=path.read_bytes(),
        mime_type=mime_type or "application/octet-stream",
        last_modified=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
    )


async def load_from_url(url: str, timeout: float = REQUEST_TIMEOUT) -> ImageFile:
    match validate_image_url(url):
        case False:
            raise ImageValidationError(MSG_INVALID_URL % url)
        case True:
            pass
    try:
        async with AsyncClient(timeout=timeout, follow_redirects=True) as client:
            response = await client.get(url.strip())
    except HTTPError as exc:
        logger.error("Failed to load image from %s: %s", url, exc)
        raise NetworkError(MSG_NETWORK_ERROR) from exc

    match response.is_success:
        case False:
            raise ImageLoadError(MSG_URL_HTTP_ERROR % response.status_code)
        case True:
            pass
    content_type = response.headers.get("content-type", "").split(";")[0].strip().lower()
    match content_type.startswith("image/"):
        case False:
            raise ImageLoadError(MSG_URL_NOT_IMAGE)
        case True:
            return ImageFile(name=image_name_from_url(url), data=response.content, mime_type=content_type)


# ── preview resource ──────────────────────────────────────────────────────────


class Preview:
    """Display reference for an intake.

    Local images get a temp file the preview owns; remote images use the URL
    itself and own nothing. ``release()`` is idempotent, and leaving a
    ``with`` block releases.
    """

    def __init__(self, ref: str, path: Optional[Path] = None) -> None:
        self.ref = ref
        self._path = path
        self._released = False

    @classmethod
    def for_file(cls, image: ImageFile, directory: Optional[Path] = None) -> "Preview":
        match directory:
            case None:
                pass
            case d:
                d.mkdir(parents=True, exist_ok=True)
        suffix = mimetypes.guess_extension(image.mime_type) or ""
        fd, name = tempfile.mkstemp(prefix="preview_", suffix=suffix, dir=directory)
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(image.data)
        except OSError:
            os.unlink(name)
            raise
        path = Path(name)
        return cls(path.as_uri(), path)

    @classmethod
    def for_url(cls, url: str) -> "Preview":
        return cls(url)

    @property
    def path(self) -> Optional[Path]:
        return self._path

    @property
    def released(self) -> bool:
        return self._released

    def release(self) -> None:
        match (self._released, self._path):
            case (True, _):
                return
            case (False, None):
                pass
            case (False, path):
                path.unlink(missing_ok=True)
        self._released = True

    def __enter__(self) -> "Preview":
        return self

    def __exit__(self, *exc_info) -> None:
        self.release()
