"""OpenRouterAnalysisClient: OpenRouter multimodal backend over the OpenAI SDK."""
import logging
from typing import Any

from openai import APIConnectionError, APIStatusError, AsyncOpenAI

from img2prompt.analysis.client import AnalysisClient
from img2prompt.constants import (
    ANALYSIS_MAX_TOKENS,
    ANALYSIS_TEMPERATURE,
    AVAILABLE_MODELS,
    DEFAULT_APP_REFERER,
    DEFAULT_APP_TITLE,
    DEFAULT_LANGUAGE,
    DEFAULT_MODEL,
    KEY_TEST_MAX_TOKENS,
    KEY_TEST_MESSAGE,
    KEY_TEST_TIMEOUT,
    MSG_ANALYSIS_ACCESS_DENIED,
    MSG_ANALYSIS_GENERIC,
    MSG_ANALYSIS_INVALID_KEY,
    MSG_ANALYSIS_RATE_LIMITED,
    MSG_ANALYSIS_SERVER_ERROR,
    MSG_EMPTY_RESPONSE,
    MSG_MALFORMED_RESPONSE,
    MSG_NETWORK_ERROR,
    MSG_NO_OPENROUTER_KEY,
    OPENROUTER_BASE_URL,
    PROMPT_TEMPLATES,
    REQUEST_TIMEOUT,
)
from img2prompt.errors import (
    AccessDeniedError,
    ConfigurationError,
    InvalidKeyError,
    MalformedResponseError,
    NetworkError,
    RateLimitedError,
    UpstreamError,
    UpstreamServerError,
)
from img2prompt.imaging import to_data_url
from img2prompt.models import ImageFile

logger = logging.getLogger(__name__)


def _upstream_detail(exc: APIStatusError) -> str:
    match exc.body:
        case {"message": str() as message} if message:
            return message
        case _:
            return exc.message


def _status_error(exc: APIStatusError) -> UpstreamError:
    status = exc.status_code
    match status:
        case 401:
            return InvalidKeyError(MSG_ANALYSIS_INVALID_KEY, status)
        case 403:
            return AccessDeniedError(MSG_ANALYSIS_ACCESS_DENIED % _upstream_detail(exc), status)
        case 429:
            return RateLimitedError(MSG_ANALYSIS_RATE_LIMITED, status)
        case 500:
            return UpstreamServerError(MSG_ANALYSIS_SERVER_ERROR, status)
        case _:
            return UpstreamError(MSG_ANALYSIS_GENERIC % (status, _upstream_detail(exc)), status)


def _completion_text(response: Any) -> str:
    match getattr(response, "choices", None) or []:
        case []:
            raise MalformedResponseError(MSG_MALFORMED_RESPONSE)
        case [first, *_]:
            message = getattr(first, "message", None)
            content = getattr(message, "content", None) or ""
            match content.strip():
                case "":
                    raise MalformedResponseError(MSG_EMPTY_RESPONSE)
                case text:
                    return text


class OpenRouterAnalysisClient(AnalysisClient):

    def __init__(
        self,
        api_key: str = "",
        model: str = DEFAULT_MODEL,
        timeout: float = REQUEST_TIMEOUT,
        referer: str = DEFAULT_APP_REFERER,
        title: str = DEFAULT_APP_TITLE,
    ) -> None:
        self._api_key = api_key
        self._model = model
        self._timeout = timeout
        self._referer = referer
        self._title = title

    @property
    def has_key(self) -> bool:
        return bool(self._api_key.strip())

    def with_key(self, api_key: str) -> "OpenRouterAnalysisClient":
        return OpenRouterAnalysisClient(api_key, self._model, self._timeout, self._referer, self._title)

    async def _create(self, timeout: float, **request: Any) -> Any:
        client = AsyncOpenAI(
            api_key=self._api_key,
            base_url=OPENROUTER_BASE_URL,
            timeout=timeout,
            max_retries=0,
            default_headers={"HTTP-Referer": self._referer, "X-Title": self._title},
        )
        try:
            return await client.chat.completions.create(**request)
        except APIStatusError as exc:
            error = _status_error(exc)
            logger.error("OpenRouter request failed (%s): %s", error.status, error)
            raise error from exc
        except APIConnectionError as exc:
            logger.error("OpenRouter unreachable: %s", exc)
            raise NetworkError(MSG_NETWORK_ERROR) from exc

    async def analyze(
        self,
        image: str | ImageFile,
        model: str | None = None,
        language: str | None = None,
        custom_instruction: str | None = None,
    ) -> str:
        match self.has_key:
            case False:
                raise ConfigurationError(MSG_NO_OPENROUTER_KEY)
            case True:
                pass

        prompt = custom_instruction or PROMPT_TEMPLATES.get(
            language or DEFAULT_LANGUAGE, PROMPT_TEMPLATES[DEFAULT_LANGUAGE]
        )
        match image:
            case str() as url:
                image_url = url
            case ImageFile() as file:
                image_url = to_data_url(file)
            case _:
                raise TypeError(f"unsupported image source: {type(image).__name__}")

        chosen = model or self._model
        logger.info("Analysing image with %s…", chosen)
        response = await self._create(
            self._timeout,
            model=chosen,
            messages=[
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": prompt},
                        {"type": "image_url", "image_url": {"url": image_url}},
                    ],
                }
            ],
            max_tokens=ANALYSIS_MAX_TOKENS,
            temperature=ANALYSIS_TEMPERATURE,
        )
        return _completion_text(response)

    async def test_key(self, candidate: str) -> bool:
        probe = self.with_key(candidate)
        match probe.has_key:
            case False:
                return False
            case True:
                pass
        try:
            await probe._create(
                KEY_TEST_TIMEOUT,
                model=self._model,
                messages=[{"role": "user", "content": KEY_TEST_MESSAGE}],
                max_tokens=KEY_TEST_MAX_TOKENS,
            )
            return True
        except Exception as exc:
            logger.warning("OpenRouter key test failed: %s", exc)
            return False

    def available_models(self) -> list[str]:
        return list(AVAILABLE_MODELS)
