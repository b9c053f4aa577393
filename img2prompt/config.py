from dataclasses import dataclass
from pathlib import Path
from typing import Optional
import os
from dotenv import load_dotenv

from img2prompt.constants import (
    DEFAULT_APP_REFERER,
    DEFAULT_APP_TITLE,
    DEFAULT_MODEL,
    PREVIEW_DIRNAME,
    REQUEST_TIMEOUT,
    STORAGE_QUOTA_BYTES,
)


def _parse_int(name: str, raw: str) -> int:
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


@dataclass(frozen=True)
class Config:
    data_dir: Path
    log_level: str = "INFO"
    request_timeout: int = REQUEST_TIMEOUT
    analysis_model: str = DEFAULT_MODEL
    app_referer: str = DEFAULT_APP_REFERER
    app_title: str = DEFAULT_APP_TITLE
    storage_quota: int = STORAGE_QUOTA_BYTES
    openrouter_api_key: Optional[str] = None
    imgbb_api_key: Optional[str] = None

    @property
    def preview_dir(self) -> Path:
        return self.data_dir / PREVIEW_DIRNAME

    @classmethod
    def from_env(cls) -> "Config":
        load_dotenv()

        data_dir = os.getenv("IMG2PROMPT_DATA_DIR", ".img2prompt")
        log_level = os.getenv("LOG_LEVEL", "INFO")
        request_timeout = os.getenv("REQUEST_TIMEOUT", str(REQUEST_TIMEOUT))
        model = os.getenv("OPENROUTER_MODEL", DEFAULT_MODEL)
        referer = os.getenv("APP_REFERER", DEFAULT_APP_REFERER)
        title = os.getenv("APP_TITLE", DEFAULT_APP_TITLE)
        quota = os.getenv("STORAGE_QUOTA_BYTES", str(STORAGE_QUOTA_BYTES))
        openrouter_api_key = os.getenv("OPENROUTER_API_KEY") or None
        imgbb_api_key = os.getenv("IMGBB_API_KEY") or None

        return cls._validate(
            data_dir=Path(data_dir),
            log_level=log_level,
            request_timeout=_parse_int("REQUEST_TIMEOUT", request_timeout),
            analysis_model=model.strip(),
            app_referer=referer,
            app_title=title,
            storage_quota=_parse_int("STORAGE_QUOTA_BYTES", quota),
            openrouter_api_key=openrouter_api_key,
            imgbb_api_key=imgbb_api_key,
        )

    @staticmethod
    def _validate(
        data_dir: Path,
        log_level: str,
        request_timeout: int,
        analysis_model: str,
        app_referer: str,
        app_title: str,
        storage_quota: int,
        openrouter_api_key: Optional[str],
        imgbb_api_key: Optional[str],
    ) -> "Config":
        match request_timeout:
            case n if n > 0:
                pass
            case _:
                raise ValueError("REQUEST_TIMEOUT must be a positive number of seconds")

        match storage_quota:
            case n if n > 0:
                pass
            case _:
                raise ValueError("STORAGE_QUOTA_BYTES must be positive")

        match analysis_model:
            case "":
                raise ValueError("OPENROUTER_MODEL must not be blank")
            case _:
                pass

        return Config(
            data_dir=data_dir,
            log_level=log_level,
            request_timeout=request_timeout,
            analysis_model=analysis_model,
            app_referer=app_referer,
            app_title=app_title,
            storage_quota=storage_quota,
            openrouter_api_key=openrouter_api_key,
            imgbb_api_key=imgbb_api_key,
        )
