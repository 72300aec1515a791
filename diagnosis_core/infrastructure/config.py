import os
import logging
from pathlib import Path

from diagnosis_core.application.engine import EngineConfig

logger = logging.getLogger(__name__)

BUNDLED_REFERENCE_DATA = Path(__file__).parent.parent / "data" / "reference.json"


def get_secret(name: str, default: str | None = None) -> str | None:
    value = os.environ.get(name)
    if value is None or value.strip() == "":
        return default
    return value.strip()


def _get_number(name: str, default, cast):
    raw = get_secret(name)
    if raw is None:
        return default
    try:
        return cast(raw)
    except ValueError:
        logger.warning("Ignoring malformed %s=%r; using default %s", name, raw, default)
        return default


class Settings:
    @property
    def log_level(self) -> str:
        level = (get_secret("LOG_LEVEL", "INFO") or "INFO").upper()
        if not isinstance(logging.getLevelName(level), int):
            logger.warning("Ignoring unknown LOG_LEVEL=%r; using INFO", level)
            return "INFO"
        return level

    @property
    def session_ttl_seconds(self) -> int:
        return _get_number("SESSION_TTL_SECONDS", 30 * 60, int)

    @property
    def completed_session_retention_seconds(self) -> int:
        return _get_number("COMPLETED_SESSION_RETENTION_SECONDS", 24 * 60 * 60, int)

    @property
    def redis_url(self) -> str | None:
        return get_secret("REDIS_URL")

    @property
    def reference_data_path(self) -> str:
        return get_secret("REFERENCE_DATA_PATH", str(BUNDLED_REFERENCE_DATA)) or str(BUNDLED_REFERENCE_DATA)

    @property
    def history_store_path(self) -> str:
        default = str(Path(".diagnosis_core") / "history.json")
        return get_secret("HISTORY_STORE_PATH", default) or default

    @property
    def clinician_webhook_url(self) -> str | None:
        return get_secret("CLINICIAN_WEBHOOK_URL")

    @property
    def history_source_timeout_seconds(self) -> float:
        return _get_number("HISTORY_SOURCE_TIMEOUT_SECONDS", 2.0, float)

    @property
    def approval_threshold(self) -> float:
        return _get_number("OTC_APPROVAL_THRESHOLD", 0.6, float)

    @property
    def free_text_max_matches(self) -> int:
        return _get_number("FREE_TEXT_MAX_MATCHES", 10, int)

    @property
    def engine_config(self) -> EngineConfig:
        return EngineConfig(
            probability_floor=_get_number("DIAGNOSIS_PROBABILITY_FLOOR", 0.05, float),
            max_results=_get_number("DIAGNOSIS_MAX_RESULTS", 10, int),
            rarity_threshold=_get_number("DIAGNOSIS_RARITY_THRESHOLD", 0.01, float),
        )
