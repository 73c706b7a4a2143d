"""Runtime configuration helpers for readtrace."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path


def _load_env_file() -> None:
    env_path = Path(".env")
    if not env_path.exists():
        return
    for line in env_path.read_text().splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        if "=" not in stripped:
            continue
        key, value = stripped.split("=", 1)
        os.environ.setdefault(key, value)


_load_env_file()


@dataclass(frozen=True)
class Settings:
    """Typed wrapper around environment-driven configuration."""

    db_path: Path
    blob_dir: Path
    update_interval_ms: int
    node_offset_x: float
    node_offset_y: float
    log_level: str
    openai_model: str
    openai_api_key: str | None
    mock_llm: bool

    @property
    def update_interval_s(self) -> float:
        return self.update_interval_ms / 1000.0


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached configuration values loaded from the environment."""

    db_path = Path(os.getenv("READTRACE_DB_PATH", "readtrace.sqlite"))
    blob_dir = Path(os.getenv("READTRACE_BLOB_DIR", ".cache/documents"))
    update_interval = int(os.getenv("READTRACE_UPDATE_INTERVAL_MS", "500"))
    offset_x = float(os.getenv("READTRACE_NODE_OFFSET_X", "150"))
    offset_y = float(os.getenv("READTRACE_NODE_OFFSET_Y", "150"))
    log_level = os.getenv("READTRACE_LOG_LEVEL", "INFO")
    openai_model = os.getenv("OPENAI_MODEL", "gpt-4o-mini")
    openai_api_key = os.getenv("OPENAI_API_KEY") or None
    mock_llm = os.getenv("MOCK_LLM", "0") == "1"

    if update_interval <= 0:
        msg = "READTRACE_UPDATE_INTERVAL_MS must be positive"
        raise ValueError(msg)

    return Settings(
        db_path=db_path,
        blob_dir=blob_dir,
        update_interval_ms=update_interval,
        node_offset_x=offset_x,
        node_offset_y=offset_y,
        log_level=log_level,
        openai_model=openai_model,
        openai_api_key=openai_api_key,
        mock_llm=mock_llm,
    )
