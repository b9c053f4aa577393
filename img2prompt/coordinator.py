"""AppCoordinator: session state and the upload → analyse → persist sequence."""
import asyncio
import logging
from contextlib import ExitStack
from dataclasses import dataclass, field, replace
from pathlib import PurePath
from typing import Iterable, Optional

from img2prompt.analysis.client import AnalysisClient
from img2prompt.analysis.openrouter import OpenRouterAnalysisClient
from img2prompt.config import Config
from img2prompt.constants import (
    COMPRESS_MAX_DIMENSION,
    COMPRESS_MAX_SIZE_MB,
    COMPRESS_QUALITY,
    COMPRESS_THRESHOLD_MB,
    LANGUAGES,
    MSG_ANALYSIS_FAILED,
    MSG_ANALYSIS_IN_PROGRESS,
    MSG_HOSTING_FALLBACK,
    MSG_INVALID_URL,
    MSG_NO_IMAGE,
    MSG_NO_OPENROUTER_KEY,
    MSG_PROCESSING_FAILED,
    OUTPUT_FORMATS,
)
from img2prompt.errors import (
    AnalysisInProgressError,
    ConfigurationError,
    Img2PromptError,
    ImageValidationError,
)
from img2prompt.hosting.client import HostingClient
from img2prompt.hosting.imgbb import ImgBBHostingClient
from img2prompt.imaging import (
    Preview,
    compress,
    generate_id,
    image_name_from_url,
    should_compress,
    to_base64,
    validate,
    validate_image_url,
)
from img2prompt.models import (
    AnalysisRecord,
    ApiCredentials,
    ImageFile,
    ImageIntake,
    StorageStats,
    UserPreferences,
    utcnow,
)
from img2prompt.storage import LocalStorage, StorageManager

logger = logging.getLogger(__name__)


@dataclass
class SessionState:
    current_image: Optional[ImageIntake] = None
    is_analyzing: bool = False
    is_processing: bool = False
    result: Optional[AnalysisRecord] = None
    error: Optional[Img2PromptError] = None
    history: list[AnalysisRecord] = field(default_factory=list)
    credentials: ApiCredentials = field(default_factory=ApiCredentials)
    preferences: UserPreferences = field(default_factory=UserPreferences)


class AppCoordinator:
    """Owns the active session and sequences the hosting and analysis calls.

    All persistence goes through the StorageManager. Remote clients are built
    per call from the current credentials, so updating a key never mutates a
    client another caller may be holding.
    """

    def __init__(self, config: Config, store: Optional[StorageManager] = None) -> None:
        self._config = config
        self._store = store or StorageManager(LocalStorage(config.data_dir, config.storage_quota))
        self.state = SessionState()

    @property
    def config(self) -> Config:
        return self._config

    # ── lifecycle ─────────────────────────────────────────────────────────────

    def initialize(self) -> None:
        self.state.credentials = self._store.get_credentials()
        self.state.preferences = self._store.get_preferences()
        self._seed_credentials()
        self.load_history()

    def _seed_credentials(self) -> None:
        # env keys only fill blanks; saved keys always win
        current = self.state.credentials
        candidates = (
            ("openrouter_key", current.openrouter_key, self._config.openrouter_api_key),
            ("imgbb_key", current.imgbb_key, self._config.imgbb_api_key),
        )
        changes = {name: env for name, saved, env in candidates if env and not saved}
        if changes:
            self.update_credentials(**changes)

    def close(self) -> None:
        self.clear_image()

    def __enter__(self) -> "AppCoordinator":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    # ── remote clients ────────────────────────────────────────────────────────

    def _analysis_client(self) -> AnalysisClient:
        return OpenRouterAnalysisClient(
            self.state.credentials.openrouter_key,
            model=self._config.analysis_model,
            timeout=self._config.request_timeout,
            referer=self._config.app_referer,
            title=self._config.app_title,
        )

    def _hosting_client(self) -> HostingClient:
        return ImgBBHostingClient(self.state.credentials.imgbb_key, timeout=self._config.request_timeout)

    # ── image intake ──────────────────────────────────────────────────────────

    def set_image(self, intake: Optional[ImageIntake]) -> None:
        previous = self.state.current_image
        self.state.current_image = intake
        self.state.result = None
        match previous:
            case None:
                pass
            case old if intake is None or old.preview is not intake.preview:
                old.preview.release()
            case _:
                pass

    def clear_image(self) -> None:
        self.set_image(None)

    def clear_error(self) -> None:
        self.state.error = None

    def set_image_url(self, url: str) -> Optional[ImageIntake]:
        match validate_image_url(url):
            case False:
                self.state.error = ImageValidationError(MSG_INVALID_URL % url)
                return None
            case True:
                pass
        source = url.strip()
        intake = ImageIntake(
            id=generate_id(),
            file=None,
            preview=Preview.for_url(source),
            name=image_name_from_url(source),
            size=0,
            mime_type="image/*",
            captured_at=utcnow(),
            hosted_url=source,
            from_url=True,
        )
        self.clear_error()
        self.set_image(intake)
        return intake

    async def process_image_file(self, image: ImageFile) -> Optional[ImageIntake]:
        """Validate, shrink if needed and make ``image`` the current intake.

        On failure the error is recorded and the previous intake is kept.
        """
        self.state.error = None
        self.state.is_processing = True
        try:
            validation = validate(image)
            match validation.ok:
                case False:
                    raise ImageValidationError(validation.error)
                case True:
                    pass
            processed = (
                await asyncio.to_thread(
                    compress,
                    image,
                    quality=COMPRESS_QUALITY,
                    max_size_mb=COMPRESS_MAX_SIZE_MB,
                    max_dimension=COMPRESS_MAX_DIMENSION,
                )
                if should_compress(image, COMPRESS_THRESHOLD_MB)
                else image
            )
            with ExitStack() as cleanup:
                preview = cleanup.enter_context(Preview.for_file(processed, self._config.preview_dir))
                intake = ImageIntake(
                    id=generate_id(),
                    file=processed,
                    preview=preview,
                    name=image.name,
                    size=processed.size,
                    mime_type=processed.mime_type,
                    captured_at=utcnow(),
                )
                cleanup.pop_all()
        except Img2PromptError as exc:
            logger.warning("Image rejected: %s", exc)
            self.state.error = exc
            return None
        except OSError as exc:
            logger.error("Could not stage preview for %s: %s", image.name, exc)
            self.state.error = Img2PromptError(MSG_PROCESSING_FAILED)
            return None
        finally:
            self.state.is_processing = False

        self.set_image(intake)
        return intake

    # ── analysis ──────────────────────────────────────────────────────────────

    async def _resolve_source(self, intake: ImageIntake) -> tuple[str | ImageFile, Optional[str]]:
        """Pick what the analysis call sees: a hosted URL when possible, else the bytes."""
        match (intake.from_url, intake.file, self.state.credentials.imgbb_key.strip()):
            case (True, _, _):
                return intake.hosted_url, intake.hosted_url
            case (False, ImageFile() as file, key) if key:
                try:
                    url = await self._hosting_client().upload(
                        to_base64(file), name=PurePath(file.name).stem
                    )
                except Img2PromptError as exc:
                    logger.warning(MSG_HOSTING_FALLBACK, exc)
                    return file, None
                match self.state.current_image is intake:
                    case True:
                        self.state.current_image = replace(intake, hosted_url=url)
                    case False:
                        pass
                return url, url
            case (False, ImageFile() as file, _):
                return file, None
            case _:
                raise ConfigurationError(MSG_NO_IMAGE)

    async def analyze(self) -> Optional[AnalysisRecord]:
        """Run one analysis of the current intake.

        Missing intake or key records a ConfigurationError without any network
        call. A second call while one is running raises AnalysisInProgressError.
        """
        match self.state.is_analyzing:
            case True:
                raise AnalysisInProgressError(MSG_ANALYSIS_IN_PROGRESS)
            case False:
                pass

        intake = self.state.current_image
        match (intake, self.state.credentials.openrouter_key.strip()):
            case (None, _):
                self.state.error = ConfigurationError(MSG_NO_IMAGE)
                return None
            case (_, ""):
                self.state.error = ConfigurationError(MSG_NO_OPENROUTER_KEY)
                return None
            case _:
                pass

        self.state.is_analyzing = True
        self.state.error = None
        try:
            source, hosted_url = await self._resolve_source(intake)
            prompt = await self._analysis_client().analyze(
                source, language=self.state.preferences.language
            )
        except Img2PromptError as exc:
            logger.error("Image analysis failed: %s", exc)
            self.state.error = exc
            return None
        except Exception:
            logger.exception("Image analysis failed")
            self.state.error = Img2PromptError(MSG_ANALYSIS_FAILED)
            return None
        finally:
            self.state.is_analyzing = False

        record = AnalysisRecord(
            id=generate_id(),
            image_name=intake.name,
            prompt=prompt,
            timestamp=utcnow(),
            image_url=hosted_url,
        )
        self.state.result = record
        match self.state.preferences.auto_save:
            case True:
                self.save_record(record)
            case False:
                pass
        return record

    # ── history ───────────────────────────────────────────────────────────────

    def load_history(self) -> list[AnalysisRecord]:
        self.state.history = self._store.list_records()
        return self.state.history

    def save_record(self, record: AnalysisRecord) -> None:
        self._store.save_record(record)
        self.load_history()

    def delete_history_item(self, record_id: str) -> None:
        self._store.delete_record(record_id)
        self.load_history()

    def delete_history_items(self, record_ids: Iterable[str]) -> None:
        self._store.delete_records(record_ids)
        self.load_history()

    def clear_history(self) -> None:
        self._store.clear_records()
        self.load_history()

    def search_history(self, query: str) -> list[AnalysisRecord]:
        return self._store.search_records(query)

    def export_history(self) -> str:
        return self._store.export_records()

    def import_history(self, text: str) -> bool:
        ok = self._store.import_records(text)
        self.load_history()
        return ok

    def storage_stats(self) -> StorageStats:
        return self._store.storage_stats()

    # ── settings ──────────────────────────────────────────────────────────────

    def update_credentials(
        self, openrouter_key: Optional[str] = None, imgbb_key: Optional[str] = None
    ) -> ApiCredentials:
        changes = {
            k: v.strip()
            for k, v in (("openrouter_key", openrouter_key), ("imgbb_key", imgbb_key))
            if v is not None
        }
        updated = replace(self.state.credentials, **changes)
        self._store.save_credentials(updated)
        self.state.credentials = updated
        return updated

    def update_preferences(self, **changes) -> UserPreferences:
        match changes.get("language", self.state.preferences.language):
            case lang if lang in LANGUAGES:
                pass
            case lang:
                raise ValueError(f"unsupported language: {lang}")
        match changes.get("output_format", self.state.preferences.output_format):
            case fmt if fmt in OUTPUT_FORMATS:
                pass
            case fmt:
                raise ValueError(f"unsupported output format: {fmt}")
        updated = replace(self.state.preferences, **changes)
        self._store.save_preferences(updated)
        self.state.preferences = updated
        return updated

    async def test_analysis_key(self, candidate: str) -> bool:
        return await self._analysis_client().test_key(candidate)

    async def test_hosting_key(self, candidate: str) -> bool:
        return await self._hosting_client().test_key(candidate)
