import os
from dataclasses import dataclass

from dotenv import find_dotenv, load_dotenv

from sms_ledger.logger import get_logger

logger = get_logger(__name__)


CONFIG_FILENAME = "config.yaml"

DEFAULT_OPENAI_MODEL = "deepseek/deepseek-r1"
DEFAULT_OPENAI_BASE_URL = "https://openrouter.ai/api/v1"
DEFAULT_LLM_TIMEOUT = 30.0
DEFAULT_LLM_BATCH_TIMEOUT = 45.0
DEFAULT_PRIMARY_WEIGHT = 0.7
DEFAULT_SECONDARY_WEIGHT = 0.3
DEFAULT_EVENT_QUEUE_SIZE = 100

_CONFIG_KEYS = (
    "LOG_LEVEL",
    "LOG_DIR",
    "DATA_DIR",
    "DATABASE_URL",
    "OPENAI_API_KEY",
    "OPENAI_MODEL",
    "OPENAI_BASE_URL",
    "LLM_ENABLED",
    "LLM_TIMEOUT",
    "LLM_BATCH_TIMEOUT",
    "ENSEMBLE_PRIMARY_WEIGHT",
    "ENSEMBLE_SECONDARY_WEIGHT",
    "INGEST_CONCURRENCY",
    "EVENT_QUEUE_SIZE",
)

_config_file_path: str | None = None
_config_file_values: dict[str, str] = {}


def _resolve_dotenv_path() -> str | None:
    config_dir = os.getenv("CONFIG_DIR")
    if config_dir:
        candidate = os.path.join(config_dir, ".env")
        if os.path.exists(candidate):
            return candidate
    return find_dotenv(usecwd=True) or None


def _resolve_config_path() -> str:
    config_dir = os.getenv("CONFIG_DIR")
    if config_dir:
        return os.path.join(config_dir, CONFIG_FILENAME)
    cwd = os.getcwd()
    nested = os.path.join(cwd, "config", CONFIG_FILENAME)
    if os.path.exists(nested):
        return nested
    return os.path.join(cwd, CONFIG_FILENAME)


def _clean_value(raw_value: str) -> str:
    value = raw_value.strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in {'"', "'"}:
        return value[1:-1]
    # Unquoted values may carry a trailing comment
    if " #" in value:
        value = value.split(" #", 1)[0].rstrip()
    return value


def read_config_file(path: str | None) -> dict[str, str]:
    """Read flat ``KEY: value`` lines; nested YAML is not supported."""
    if not path or not os.path.exists(path):
        return {}

    values: dict[str, str] = {}
    with open(path, encoding="utf-8") as handle:
        for line in handle:
            stripped = line.strip()
            if not stripped or stripped.startswith("#") or ":" not in stripped:
                continue
            key, raw_value = stripped.split(":", 1)
            key = key.strip()
            value = _clean_value(raw_value)
            if key and value:
                values[key] = value
    return values


def load_environment() -> None:
    global _config_file_path
    global _config_file_values

    dotenv_path = _resolve_dotenv_path()
    if dotenv_path:
        load_dotenv(dotenv_path=dotenv_path, override=False)

    _config_file_path = _resolve_config_path()
    _config_file_values = read_config_file(_config_file_path)

    # Real environment variables win over the config file
    for key in _CONFIG_KEYS:
        if key not in os.environ and key in _config_file_values:
            os.environ[key] = _config_file_values[key]


def get_config_path() -> str | None:
    return _config_file_path


def ensure_dirs(*paths: str | None) -> None:
    for path in paths:
        if path and path not in {".", "./"}:
            os.makedirs(path, exist_ok=True)


def get_env_int(name: str, default: int, min_value: int | None = None) -> int:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning("[ENV] Invalid %s='%s', using default %s.", name, raw, default)
        return default
    if min_value is not None and value < min_value:
        logger.warning(
            "[ENV] %s='%s' below minimum %s, using default %s.",
            name,
            raw,
            min_value,
            default,
        )
        return default
    return value


def get_env_float(name: str, default: float = 0.0, min_value: float | None = None) -> float:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        logger.warning("[ENV] Invalid %s='%s', using default %s.", name, raw, default)
        return default
    if min_value is not None and value < min_value:
        logger.warning(
            "[ENV] %s='%s' below minimum %s, using default %s.",
            name,
            raw,
            min_value,
            default,
        )
        return default
    return value


def get_env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    normalized = raw.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    logger.warning("[ENV] Invalid boolean %s='%s', using default %s.", name, raw, default)
    return default


_SENSITIVE_MARKERS = ("KEY", "TOKEN", "SECRET", "PASSWORD", "AUTH")


def _mask_env_value(name: str, value: str) -> str:
    sanitized = value.replace("\r", "\\r").replace("\n", "\\n")
    sensitive = any(marker in name.upper() for marker in _SENSITIVE_MARKERS)
    if not sensitive and not sanitized.startswith(("sk-", "Bearer ")):
        return sanitized
    if len(sanitized) <= 4:
        return "****"
    return f"{sanitized[:2]}...{sanitized[-2:]}"


def log_environment() -> None:
    logger.info("[ENV] Logging configured environment variables (masked where needed).")
    for key in _CONFIG_KEYS:
        raw_value = os.getenv(key)
        value = "<unset>" if raw_value is None else _mask_env_value(key, raw_value)
        logger.info("[ENV] %s=%s", key, value)


@dataclass(frozen=True)
class AppConfig:
    data_dir: str
    database_url: str
    openai_api_key: str | None
    openai_model: str
    openai_base_url: str
    llm_enabled: bool
    llm_timeout: float
    llm_batch_timeout: float
    primary_weight: float
    secondary_weight: float
    ingest_concurrency: int
    event_queue_size: int

    @property
    def llm_configured(self) -> bool:
        return self.llm_enabled and bool(self.openai_api_key)


def load_config() -> AppConfig:
    """Snapshot the environment into an immutable config for wiring services."""
    data_dir = os.getenv("DATA_DIR", ".")
    database_url = os.getenv("DATABASE_URL") or f"sqlite:///{os.path.join(data_dir, 'sms_ledger.db')}"
    api_key = os.getenv("OPENAI_API_KEY") or None
    return AppConfig(
        data_dir=data_dir,
        database_url=database_url,
        openai_api_key=api_key,
        openai_model=os.getenv("OPENAI_MODEL") or DEFAULT_OPENAI_MODEL,
        openai_base_url=os.getenv("OPENAI_BASE_URL") or DEFAULT_OPENAI_BASE_URL,
        llm_enabled=get_env_bool("LLM_ENABLED", default=api_key is not None),
        llm_timeout=get_env_float("LLM_TIMEOUT", DEFAULT_LLM_TIMEOUT, min_value=1.0),
        llm_batch_timeout=get_env_float("LLM_BATCH_TIMEOUT", DEFAULT_LLM_BATCH_TIMEOUT, min_value=1.0),
        primary_weight=get_env_float("ENSEMBLE_PRIMARY_WEIGHT", DEFAULT_PRIMARY_WEIGHT, min_value=0.0),
        secondary_weight=get_env_float("ENSEMBLE_SECONDARY_WEIGHT", DEFAULT_SECONDARY_WEIGHT, min_value=0.0),
        ingest_concurrency=get_env_int("INGEST_CONCURRENCY", 1, min_value=1),
        event_queue_size=get_env_int("EVENT_QUEUE_SIZE", DEFAULT_EVENT_QUEUE_SIZE, min_value=0),
    )


load_environment()

DATA_DIR = os.getenv("DATA_DIR", ".")
LOG_DIR = os.getenv("LOG_DIR")
CONFIG_DIR = os.getenv("CONFIG_DIR")

ensure_dirs(DATA_DIR, LOG_DIR, CONFIG_DIR)

# SSE headers to reduce proxy buffering and keep connections alive.
SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}
