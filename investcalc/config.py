from __future__ import annotations

from functools import lru_cache
import os
from pathlib import Path

from pydantic import BaseModel, Field

from investcalc.coefficients import CoefficientTables, load_coefficients


def _env(name: str, default: str = "") -> str:
    return os.getenv(name, default).strip()


def _resolve_home() -> Path:
    override = _env("INVESTCALC_HOME")
    if override:
        return Path(override).expanduser().resolve()
    return Path.cwd().resolve()


def _resolve_db_path() -> Path:
    override = _env("INVESTCALC_DB")
    if override:
        return Path(override).expanduser()
    return _resolve_home() / "data" / "investcalc.db"


def _resolve_coefficients_file() -> Path | None:
    override = _env("INVESTCALC_COEFFICIENTS")
    return Path(override).expanduser() if override else None


def _flag(name: str) -> bool:
    return _env(name).lower() in ("1", "true", "yes", "on")


class Settings(BaseModel):
    home: Path = Field(default_factory=_resolve_home)
    db_path: Path = Field(default_factory=_resolve_db_path)
    coefficients_file: Path | None = Field(default_factory=_resolve_coefficients_file)

    base_url: str = Field(default_factory=lambda: _env("INVESTCALC_BASE_URL", "http://localhost:8000/"))

    ai_enabled: bool = Field(default_factory=lambda: _flag("INVESTCALC_AI_ENABLED"))
    ai_timeout_seconds: float = Field(default_factory=lambda: float(_env("INVESTCALC_AI_TIMEOUT", "20")))
    llm_provider: str = Field(default_factory=lambda: _env("LLM_PROVIDER", "anthropic"))
    llm_model: str = Field(default_factory=lambda: _env("LLM_MODEL"))

    def load_coefficients(self) -> CoefficientTables:
        return load_coefficients(self.coefficients_file)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()


@lru_cache(maxsize=1)
def get_tables() -> CoefficientTables:
    """Coefficient tables for the configured override file, loaded once."""
    return get_settings().load_coefficients()
