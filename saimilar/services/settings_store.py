"""JSON file persistence for per-session settings."""

import logging
import re
from pathlib import Path

from pydantic import ValidationError

from saimilar.config import get_settings
from saimilar.models.schemas import AppSettings

logger = logging.getLogger(__name__)
settings = get_settings()

_SAFE_SESSION_ID = re.compile(r"^[A-Za-z0-9_-]{1,64}$")


def default_app_settings() -> AppSettings:
    return AppSettings(active_model=settings.session_model)


class JsonSettingsStore:
    """Loads settings once at session start and rewrites the file on every change."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    @classmethod
    def for_session(cls, session_id: str, directory: Path | None = None) -> "JsonSettingsStore":
        """Store for one browser session: ``<settings_dir>/<session_id>.json``."""
        if not _SAFE_SESSION_ID.match(session_id):
            raise ValueError(f"Invalid session id {session_id!r}")
        return cls(Path(directory or settings.settings_dir) / f"{session_id}.json")

    def load(self) -> AppSettings:
        if not self.path.exists():
            return default_app_settings()

        try:
            stored = AppSettings.model_validate_json(self.path.read_text(encoding="utf-8"))
        except (OSError, ValidationError) as e:
            logger.warning(f"Ignoring unreadable settings file {self.path}: {e}")
            return default_app_settings()

        return stored

    def save(self, app_settings: AppSettings) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(app_settings.model_dump_json(indent=2), encoding="utf-8")
        logger.debug(f"Settings saved to {self.path}")
