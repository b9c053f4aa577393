from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Optional

from img2prompt.constants import (
    DEFAULT_AUTO_SAVE,
    DEFAULT_LANGUAGE,
    DEFAULT_MAX_HISTORY_ITEMS,
    DEFAULT_OUTPUT_FORMAT,
    LANGUAGES,
    OUTPUT_FORMATS,
)

if TYPE_CHECKING:
    from img2prompt.imaging import Preview

_SIZE_UNITS = ("Bytes", "KB", "MB", "GB")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Naive datetimes are taken to be UTC."""
    match value.tzinfo:
        case None:
            return value.replace(tzinfo=timezone.utc)
        case _:
            return value.astimezone(timezone.utc)


def parse_timestamp(raw: str) -> datetime:
    # JavaScript exports end in "Z"
    text = raw[:-1] + "+00:00" if raw.endswith("Z") else raw
    return as_utc(datetime.fromisoformat(text))


def format_bytes(size: int) -> str:
    """1536 -> '1.5 KB'. Two decimals at most, trailing zeros dropped."""
    match size:
        case 0:
            return "0 Bytes"
        case _:
            exponent = next(i for i in reversed(range(len(_SIZE_UNITS))) if size >= 1024 ** i)
            value = ("%.2f" % (size / 1024 ** exponent)).rstrip("0").rstrip(".")
            return f"{value} {_SIZE_UNITS[exponent]}"


@dataclass(frozen=True)
class ImageFile:
    """In-memory image: the bytes plus what a browser File would know about them."""

    name: str
    data: bytes
    mime_type: str
    last_modified: datetime = field(default_factory=utcnow)

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass(frozen=True)
class ValidationResult:
    ok: bool
    error: Optional[str] = None


@dataclass(frozen=True)
class Dimensions:
    width: int
    height: int


@dataclass(frozen=True)
class ImageMetadata:
    name: str
    size: int
    type: str
    last_modified: datetime
    dimensions: Optional[Dimensions] = None


@dataclass(frozen=True)
class UploadLimits:
    max_file_size: int
    supported_formats: tuple[str, ...]
    max_dimensions: Dimensions


@dataclass(frozen=True)
class ImageIntake:
    """The image currently selected for analysis.

    File-sourced intakes carry ``file``; URL-sourced ones carry the source URL
    in ``hosted_url`` and report a size of 0.
    """

    id: str
    file: Optional[ImageFile]
    preview: "Preview"
    name: str
    size: int
    mime_type: str
    captured_at: datetime
    hosted_url: Optional[str] = None
    from_url: bool = False


@dataclass(frozen=True)
class AnalysisRecord:
    id: str
    image_name: str
    prompt: str
    timestamp: datetime
    image_url: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "imageName": self.image_name,
            "prompt": self.prompt,
            "timestamp": self.timestamp.isoformat(),
        }
        match self.image_url:
            case None:
                pass
            case url:
                data["imageUrl"] = url
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AnalysisRecord":
        """Raises KeyError, TypeError or ValueError on malformed input."""
        match data:
            case {"id": str() as id_, "imageName": str() as name, "prompt": str() as prompt,
                  "timestamp": str() as ts}:
                return cls(
                    id=id_,
                    image_name=name,
                    prompt=prompt,
                    timestamp=parse_timestamp(ts),
                    image_url=data.get("imageUrl") or None,
                )
            case _:
                raise ValueError(f"not an analysis record: {data!r:.80}")


@dataclass(frozen=True)
class ApiCredentials:
    openrouter_key: str = ""
    imgbb_key: str = ""

    def to_dict(self) -> dict[str, str]:
        return {"openRouterKey": self.openrouter_key, "imgbbKey": self.imgbb_key}

    @classmethod
    def from_dict(cls, data: Any) -> "ApiCredentials":
        match data:
            case dict():
                return cls(
                    openrouter_key=str(data.get("openRouterKey") or ""),
                    imgbb_key=str(data.get("imgbbKey") or ""),
                )
            case _:
                raise ValueError(f"not an api config: {data!r:.80}")


@dataclass(frozen=True)
class UserPreferences:
    language: str = DEFAULT_LANGUAGE
    output_format: str = DEFAULT_OUTPUT_FORMAT
    auto_save: bool = DEFAULT_AUTO_SAVE
    max_history_items: int = DEFAULT_MAX_HISTORY_ITEMS

    def to_dict(self) -> dict[str, Any]:
        return {
            "language": self.language,
            "outputFormat": self.output_format,
            "autoSave": self.auto_save,
            "maxHistoryItems": self.max_history_items,
        }

    @classmethod
    def from_dict(cls, data: Any) -> "UserPreferences":
        """Unknown values fall back to the default field by field."""
        match data:
            case dict():
                pass
            case _:
                raise ValueError(f"not user settings: {data!r:.80}")
        language = data.get("language")
        output_format = data.get("outputFormat")
        auto_save = data.get("autoSave")
        return cls(
            language=language if language in LANGUAGES else DEFAULT_LANGUAGE,
            output_format=output_format if output_format in OUTPUT_FORMATS else DEFAULT_OUTPUT_FORMAT,
            auto_save=auto_save if isinstance(auto_save, bool) else DEFAULT_AUTO_SAVE,
            max_history_items=data.get("maxHistoryItems", DEFAULT_MAX_HISTORY_ITEMS),
        )


@dataclass(frozen=True)
class StorageStats:
    count: int
    total_bytes: int
    formatted_size: str
    oldest: Optional[datetime]
    newest: Optional[datetime]
