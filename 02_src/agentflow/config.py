"""Project-level configuration and path helpers."""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Union

PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
DATA_DIR = PROJECT_ROOT / "03_data"
LOGS_DIR = PROJECT_ROOT / "04_logs"
DEFAULT_DB_PATH = DATA_DIR / "agent_flows.db"
DEFAULT_LOG_PATH = LOGS_DIR / "app.log"
DEFAULT_AGENTS_FILE = DATA_DIR / "agents.json"

DATA_DIR.mkdir(parents=True, exist_ok=True)
LOGS_DIR.mkdir(parents=True, exist_ok=True)


PathLike = Union[str, Path]


def resolve_db_path(env_value: PathLike | None = None) -> PathLike:
    """Resolve DATABASE_URL to an absolute path."""
    if not env_value:
        return DEFAULT_DB_PATH

    if str(env_value) == ":memory:":
        return ":memory:"

    candidate = Path(env_value)
    return candidate if candidate.is_absolute() else PROJECT_ROOT / candidate


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from e


@dataclass(frozen=True)
class Settings:
    """Engine settings read from the environment."""

    default_max_rounds: int = 10
    default_timeout_minutes: int = 60
    wait_minutes: int = 30
    conflict_retries: int = 3
    sweep_interval_seconds: int = 300
    agents_file: Path | None = None
    mail_gateway_url: str | None = None

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from FLOW_* and related environment variables."""
        agents_file = os.getenv("AGENTS_FILE")
        return cls(
            default_max_rounds=_env_int("FLOW_DEFAULT_MAX_ROUNDS", 10),
            default_timeout_minutes=_env_int("FLOW_DEFAULT_TIMEOUT_MINUTES", 60),
            wait_minutes=_env_int("FLOW_WAIT_MINUTES", 30),
            conflict_retries=_env_int("FLOW_CONFLICT_RETRIES", 3),
            sweep_interval_seconds=_env_int("FLOW_SWEEP_INTERVAL_SECONDS", 300),
            agents_file=(
                Path(agents_file) if agents_file else DEFAULT_AGENTS_FILE
            ),
            mail_gateway_url=os.getenv("MAIL_GATEWAY_URL") or None,
        )
