"""Runtime configuration: environment first, then Streamlit secrets, then defaults."""

import os
from dataclasses import dataclass, field
from typing import Optional, Tuple

import streamlit as st
from streamlit.errors import StreamlitAPIException

DEFAULT_MODELS = {"openai": "gpt-4o-mini", "gemini": "gemini-1.5-flash"}


def _secret(name: str) -> Optional[str]:
    try:
        value = st.secrets.get(name, None)
    except (FileNotFoundError, StreamlitAPIException):
        # no secrets.toml outside `streamlit run`
        return None
    return None if value is None else str(value)


def get_config(name: str, default: Optional[str] = None) -> Optional[str]:
    value = os.getenv(name)
    if value is None or value == "":
        value = _secret(name)
    return default if value is None or value == "" else value


def _int_config(name: str, default: int) -> int:
    raw = get_config(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


def _float_config(name: str) -> Optional[float]:
    raw = get_config(name)
    if raw is None:
        return None
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None


@dataclass(frozen=True)
class Settings:
    llm_provider: str = "openai"
    openai_api_key: Optional[str] = None
    google_api_key: Optional[str] = None
    openai_base_url: str = "https://api.openai.com/v1"
    llm_model: str = DEFAULT_MODELS["openai"]
    llm_timeout: Optional[float] = None
    access_password: Optional[str] = None
    max_points: int = 100
    question_row_limit: int = 50
    excluded_keys: Tuple[str, ...] = field(default=("user_id",))
    log_level: str = "INFO"

    @property
    def api_key(self) -> Optional[str]:
        """Credential for the configured provider."""
        return self.google_api_key if self.llm_provider == "gemini" else self.openai_api_key


def load_settings() -> Settings:
    provider = (get_config("LLM_PROVIDER", "openai") or "openai").strip().lower()
    if provider not in DEFAULT_MODELS:
        raise ValueError(f"LLM_PROVIDER must be one of {sorted(DEFAULT_MODELS)}, got {provider!r}")
    excluded = get_config("EXCLUDED_KEYS", "user_id") or ""
    return Settings(
        llm_provider=provider,
        openai_api_key=get_config("OPENAI_API_KEY"),
        google_api_key=get_config("GOOGLE_API_KEY"),
        openai_base_url=get_config("OPENAI_BASE_URL", "https://api.openai.com/v1").rstrip("/"),
        llm_model=get_config("LLM_MODEL", DEFAULT_MODELS[provider]),
        llm_timeout=_float_config("LLM_TIMEOUT"),
        access_password=get_config("AI_ACCESS_PASSWORD"),
        max_points=_int_config("MAX_POINTS", 100),
        question_row_limit=_int_config("QUESTION_ROW_LIMIT", 50),
        excluded_keys=tuple(k.strip() for k in excluded.split(",") if k.strip()),
        log_level=get_config("LOG_LEVEL", "INFO").upper(),
    )
