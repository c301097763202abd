"""Environment-driven settings for the lucky draw engine."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from .db.utils import resolve_sqlite_url

# Project root directory (repo root)
ROOT_DIR = Path(__file__).resolve().parents[1]

DEFAULT_DB_URL = "sqlite:///./dev.db"
DEFAULT_LOCK_TIMEOUT_SECONDS = 10.0
DEFAULT_REVEAL_FRACTION = 0.8

DEFAULT_ANIMATION_DURATION_MS = 60_000
MIN_ANIMATION_DURATION_MS = 10_000
MAX_ANIMATION_DURATION_MS = 300_000


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ValueError(f"Environment variable '{name}' must be a number") from exc


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    """Runtime configuration resolved from the process environment.

    Attributes
    ----------
    db_url : str
        SQLAlchemy database URL. Relative SQLite paths are resolved against
        the repository root.
    log_level : str
        Name of the level passed to :func:`configure_logging`.
    draw_lock_timeout : float
        Seconds a draw or redraw waits for the per-round lock before giving
        up with :class:`~luckydraw.errors.ConcurrentDrawError`.
    reveal_fraction : float
        Fraction of a round's animation duration after which the
        presentation switches from ``drawing`` to ``revealing``.
    sql_echo : bool
        Echo SQL statements emitted by the engine.
    """

    db_url: str = DEFAULT_DB_URL
    log_level: str = "INFO"
    draw_lock_timeout: float = DEFAULT_LOCK_TIMEOUT_SECONDS
    reveal_fraction: float = DEFAULT_REVEAL_FRACTION
    sql_echo: bool = False

    @classmethod
    def from_env(cls, env_file: Optional[Path] = None) -> "Settings":
        """Load ``.env`` (if present) and build settings from the environment."""
        load_dotenv(env_file)

        reveal_fraction = _env_float("REVEAL_FRACTION", DEFAULT_REVEAL_FRACTION)
        if not 0.0 <= reveal_fraction <= 1.0:
            raise ValueError("REVEAL_FRACTION must be between 0 and 1")

        lock_timeout = _env_float(
            "DRAW_LOCK_TIMEOUT_SECONDS", DEFAULT_LOCK_TIMEOUT_SECONDS
        )
        if lock_timeout < 0:
            raise ValueError("DRAW_LOCK_TIMEOUT_SECONDS must not be negative")

        return cls(
            db_url=resolve_sqlite_url(os.getenv("DB_URL", DEFAULT_DB_URL), ROOT_DIR),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            draw_lock_timeout=lock_timeout,
            reveal_fraction=reveal_fraction,
            sql_echo=_env_bool("SQL_ECHO"),
        )


def configure_logging(level: Optional[str] = None) -> None:
    """Install a basic root handler; used by the command-line scripts."""
    logging.basicConfig(
        level=level or Settings.from_env().log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


__all__ = [
    "DEFAULT_ANIMATION_DURATION_MS",
    "MAX_ANIMATION_DURATION_MS",
    "MIN_ANIMATION_DURATION_MS",
    "Settings",
    "configure_logging",
]
