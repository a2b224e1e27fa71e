"""Runtime configuration for the brand assistant.

Settings come from environment variables and can be overridden by a JSON
configuration file whose keys are the field names below.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

DEFAULT_SYSTEM_PROMPT = (
    "You are the official AI assistant for the company and its brands. Answer "
    "questions using only the provided context. If the answer is not present in "
    "the context, say you do not have that information and suggest getting in "
    "touch with the team. Never invent contact details, dates or services."
)


@dataclass(frozen=True)
class Settings:
    """Server and pipeline configuration with sensible defaults."""

    openai_api_key: Optional[str] = None
    openai_base_url: Optional[str] = None
    embedding_model: str = "text-embedding-3-small"
    embedding_dimensions: int = 1536
    chat_model: str = "gpt-4o-mini"
    temperature: float = 0.7
    max_tokens: int = 1000
    system_prompt: str = DEFAULT_SYSTEM_PROMPT

    top_k: int = 5
    chunk_size: int = 500
    chunk_overlap: int = 50
    context_min_score: float = 0.1
    stream_context_min_score: float = 0.3
    source_min_score: float = 0.5

    max_message_length: int = 2000
    conversation_ttl: int = 60 * 60 * 24
    max_history_messages: int = 10

    vector_store: str = "kv"
    data_dir: str = "data"
    supabase_url: Optional[str] = None
    supabase_anon_key: Optional[str] = None
    leads_table: str = "chat_leads"
    lead_patterns_path: Optional[str] = None
    allowed_origin: str = "*"

    @property
    def lead_capture_enabled(self) -> bool:
        return bool(self.supabase_url and self.supabase_anon_key)

    @property
    def kv_path(self) -> Path:
        return Path(self.data_dir) / "kv.sqlite3"

    @property
    def index_dir(self) -> Path:
        return Path(self.data_dir) / "index"

    @property
    def analytics_path(self) -> Path:
        return Path(self.data_dir) / "analytics.db"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if environ is None else environ
        overrides: Dict[str, Any] = {}
        for item in fields(cls):
            value = env.get(item.name.upper())
            if value is not None and value != "":
                overrides[item.name] = _coerce(item.name, value)
        return cls(**overrides)

    def with_overrides(self, overrides: Mapping[str, Any]) -> "Settings":
        known = {item.name for item in fields(self)}
        unknown = set(overrides) - known
        if unknown:
            raise ValueError(f"Unknown configuration keys: {sorted(unknown)}")
        return replace(self, **{key: _coerce(key, value) for key, value in overrides.items()})


_INT_FIELDS = {
    "embedding_dimensions",
    "max_tokens",
    "top_k",
    "chunk_size",
    "chunk_overlap",
    "max_message_length",
    "conversation_ttl",
    "max_history_messages",
}
_FLOAT_FIELDS = {"temperature", "context_min_score", "stream_context_min_score", "source_min_score"}


def _coerce(name: str, value: Any) -> Any:
    if value is None:
        return None
    if name in _INT_FIELDS:
        return int(value)
    if name in _FLOAT_FIELDS:
        return float(value)
    return value


def load_settings(path: str | Path | None = None, *, environ: Optional[Mapping[str, str]] = None) -> Settings:
    """Build settings from the environment, then apply a JSON config file."""

    settings = Settings.from_env(environ)
    if path is None:
        return settings
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")
    return settings.with_overrides(json.loads(config_path.read_text(encoding="utf-8")))
