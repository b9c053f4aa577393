"""ImgBBHostingClient: ImgBB image hosting backend."""
import logging
from pathlib import PurePath
from typing import Any

from httpx import AsyncClient, HTTPStatusError, RequestError, Response

from img2prompt.constants import (
    IMGBB_MAX_DIMENSION,
    IMGBB_MAX_FILE_SIZE,
    IMGBB_SUPPORTED_FORMATS,
    IMGBB_TEST_IMAGE,
    IMGBB_TEST_IMAGE_NAME,
    IMGBB_UPLOAD_URL,
    KEY_TEST_TIMEOUT,
    MEGABYTE,
    MSG_HOSTING_ACCESS_DENIED,
    MSG_HOSTING_FILE_TOO_LARGE,
    MSG_HOSTING_GENERIC,
    MSG_HOSTING_INVALID_IMAGE,
    MSG_HOSTING_INVALID_KEY,
    MSG_HOSTING_RATE_LIMITED,
    MSG_HOSTING_SERVER_ERROR,
    MSG_HOSTING_TOO_LARGE,
    MSG_HOSTING_UNSUPPORTED_FORMAT,
    MSG_NETWORK_ERROR,
    MSG_NO_IMGBB_KEY,
    MSG_UPLOAD_FAILED,
    REQUEST_TIMEOUT,
)
from img2prompt.errors import (
    AccessDeniedError,
    ConfigurationError,
    InvalidImageError,
    InvalidKeyError,
    NetworkError,
    PayloadTooLargeError,
    RateLimitedError,
    UploadFailedError,
    UpstreamError,
    UpstreamServerError,
)
from img2prompt.hosting.client import HostingClient
from img2prompt.imaging import strip_data_url_prefix
from img2prompt.models import Dimensions, ImageFile, UploadLimits, ValidationResult

logger = logging.getLogger(__name__)

_STATUS_ERRORS: dict[int, tuple[type[UpstreamError], str]] = {
    400: (InvalidImageError, MSG_HOSTING_INVALID_IMAGE),
    401: (InvalidKeyError, MSG_HOSTING_INVALID_KEY),
    403: (AccessDeniedError, MSG_HOSTING_ACCESS_DENIED),
    413: (PayloadTooLargeError, MSG_HOSTING_TOO_LARGE),
    429: (RateLimitedError, MSG_HOSTING_RATE_LIMITED),
    500: (UpstreamServerError, MSG_HOSTING_SERVER_ERROR),
}


def _upstream_message(response: Response, fallback: str) -> str:
    try:
        body = response.json()
    except ValueError:
        return fallback
    match body:
        case {"error": {"message": str() as message}} if message:
            return message
        case _:
            return fallback


def _status_error(exc: HTTPStatusError) -> UpstreamError:
    status = exc.response.status_code
    match _STATUS_ERRORS.get(status):
        case (error_cls, message):
            return error_cls(message, status)
        case _:
            return UpstreamError(MSG_HOSTING_GENERIC % _upstream_message(exc.response, str(exc)), status)


class ImgBBHostingClient(HostingClient):

    def __init__(self, api_key: str = "", timeout: float = REQUEST_TIMEOUT) -> None:
        self._api_key = api_key
        self._timeout = timeout

    @property
    def has_key(self) -> bool:
        return bool(self._api_key.strip())

    def with_key(self, api_key: str) -> "ImgBBHostingClient":
        return ImgBBHostingClient(api_key, self._timeout)

    async def upload(
        self, encoded_image: str, name: str | None = None, expiration: int | None = None
    ) -> str:
        match self.has_key:
            case False:
                raise ConfigurationError(MSG_NO_IMGBB_KEY)
            case True:
                pass

        form = {"key": self._api_key, "image": strip_data_url_prefix(encoded_image)}
        match name:
            case str() as n if n:
                form["name"] = n
            case _:
                pass
        match expiration:
            case int() as seconds if seconds > 0:
                form["expiration"] = str(seconds)
            case _:
                pass

        logger.info("Uploading image to ImgBB…")
        payload = await self._post(form)
        match payload:
            case {"success": True, "data": {"url": str() as url}} if url:
                return url
            case _:
                logger.error("ImgBB rejected upload: %.200s", payload)
                raise UploadFailedError(MSG_UPLOAD_FAILED)

    async def _post(self, form: dict[str, str]) -> Any:
        # (None, value) parts keep the request multipart without file names
        parts = {field: (None, value) for field, value in form.items()}
        try:
            async with AsyncClient(timeout=self._timeout) as client:
                response = await client.post(IMGBB_UPLOAD_URL, files=parts)
                response.raise_for_status()
                return response.json()
        except HTTPStatusError as exc:
            error = _status_error(exc)
            logger.error("ImgBB upload failed (%s): %s", error.status, error)
            raise error from exc
        except RequestError as exc:
            logger.error("ImgBB request failed: %s", exc)
            raise NetworkError(MSG_NETWORK_ERROR) from exc
        except ValueError as exc:
            logger.error("ImgBB returned invalid JSON: %s", exc)
            raise UploadFailedError(MSG_UPLOAD_FAILED) from exc

    async def test_key(self, candidate: str) -> bool:
        probe = ImgBBHostingClient(candidate, KEY_TEST_TIMEOUT)
        try:
            await probe.upload(IMGBB_TEST_IMAGE, name=IMGBB_TEST_IMAGE_NAME)
            return True
        except Exception as exc:
            logger.warning("ImgBB key test failed: %s", exc)
            return False

    def upload_limits(self) -> UploadLimits:
        return UploadLimits(
            max_file_size=IMGBB_MAX_FILE_SIZE,
            supported_formats=IMGBB_SUPPORTED_FORMATS,
            max_dimensions=Dimensions(width=IMGBB_MAX_DIMENSION, height=IMGBB_MAX_DIMENSION),
        )

    def validate_for_upload(self, image: ImageFile) -> ValidationResult:
        limits = self.upload_limits()
        extension = PurePath(image.name).suffix.lstrip(".").upper()
        match (image.size > limits.max_file_size, extension in limits.supported_formats):
            case (True, _):
                return ValidationResult(
                    ok=False, error=MSG_HOSTING_FILE_TOO_LARGE % (limits.max_file_size // MEGABYTE)
                )
            case (False, False):
                return ValidationResult(
                    ok=False, error=MSG_HOSTING_UNSUPPORTED_FORMAT % ", ".join(limits.supported_formats)
                )
            case _:
                return ValidationResult(ok=True)
