from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path

# Resolve repo root from this file's location:
# app/settings.py → parent = app/ → parent = repo root
REPO_ROOT = Path(__file__).resolve().parents[1]

# Canonical config and conversation store shipped with the repo
DEFAULT_CONFIG_PATH = REPO_ROOT / "configs" / "sqlgrep.yaml"
DEFAULT_CONVERSATION_DB = REPO_ROOT / "data" / "conversations.sqlite"

ANSWER_FORMATS = ("text", "markdown", "html")


@dataclass
class Settings:
    """
    Centralized application configuration.

    Does NOT depend on pydantic. Values are loaded from environment
    variables via Settings.from_env().
    """

    # --- YAML config (connections, contexts, metadata) ---
    config_path: str = str(DEFAULT_CONFIG_PATH)

    # --- Model endpoint ---
    api_key: str = ""
    base_url: str = ""
    model: str = "gpt-3.5-turbo"
    system_prompt: str = ""
    answer_format: str = ""
    llm_timeout_sec: float = 60.0
    model_max_retries: int = 1

    # --- Query execution ---
    query_timeout_sec: float = 10.0
    metadata_cache_ttl_sec: int = 300

    # --- Debug telemetry on every request ---
    debug: bool = False

    # --- Conversation memory ---
    conversation_enabled: bool = True
    conversation_db: str = str(DEFAULT_CONVERSATION_DB)
    conversation_table: str = "sqlgrep_conversations"
    conversation_max_messages: int = 10
    conversation_ttl_days: int = 10

    # --- API keys (comma-separated) ---
    api_keys_raw: str = ""

    # --- App version ---
    app_version: str = "dev"

    @property
    def api_keys(self) -> set[str]:
        return {k.strip() for k in self.api_keys_raw.split(",") if k.strip()}

    @classmethod
    def from_env(cls) -> "Settings":
        """
        Build Settings from environment variables with sane fallbacks.

        - SQLGREP_CONFIG and SQLGREP_CONVERSATION_DB may be relative; they are
          resolved against REPO_ROOT.
        - SQLGREP_* keys win over their OPENAI_* equivalents.
        """

        def getenv_int(name: str, default: int) -> int:
            raw = os.getenv(name)
            if raw is None or raw.strip() == "":
                return default
            try:
                return int(raw)
            except ValueError:
                return default

        def getenv_float(name: str, default: float) -> float:
            raw = os.getenv(name)
            if raw is None or raw.strip() == "":
                return default
            try:
                return float(raw)
            except ValueError:
                return default

        def getenv_bool(name: str, default: bool) -> bool:
            raw = os.getenv(name)
            if raw is None or raw.strip() == "":
                return default
            return raw.strip().lower() in ("1", "true", "yes", "on")

        def repo_path(name: str, default: Path) -> str:
            raw = os.getenv(name, "").strip()
            if not raw:
                return str(default)
            candidate = Path(raw)
            if not candidate.is_absolute():
                candidate = REPO_ROOT / raw
            return str(candidate)

        answer_format = os.getenv("SQLGREP_ANSWER_FORMAT", "").strip().lower()
        if answer_format not in ANSWER_FORMATS:
            answer_format = ""

        return cls(
            config_path=repo_path("SQLGREP_CONFIG", DEFAULT_CONFIG_PATH),
            api_key=os.getenv("SQLGREP_API_KEY") or os.getenv("OPENAI_API_KEY") or "",
            base_url=os.getenv("SQLGREP_BASE_URL") or os.getenv("OPENAI_BASE_URL") or "",
            model=os.getenv("SQLGREP_MODEL", cls.model),
            system_prompt=os.getenv("SQLGREP_SYSTEM_PROMPT", cls.system_prompt),
            answer_format=answer_format,
            llm_timeout_sec=getenv_float("SQLGREP_LLM_TIMEOUT", cls.llm_timeout_sec),
            model_max_retries=getenv_int("SQLGREP_MODEL_MAX_RETRIES", cls.model_max_retries),
            query_timeout_sec=getenv_float("SQLGREP_QUERY_TIMEOUT", cls.query_timeout_sec),
            metadata_cache_ttl_sec=getenv_int(
                "SQLGREP_METADATA_CACHE_TTL", cls.metadata_cache_ttl_sec
            ),
            debug=getenv_bool("SQLGREP_DEBUG", cls.debug),
            conversation_enabled=getenv_bool(
                "SQLGREP_CONVERSATION_ENABLED", cls.conversation_enabled
            ),
            conversation_db=repo_path("SQLGREP_CONVERSATION_DB", DEFAULT_CONVERSATION_DB),
            conversation_table=os.getenv(
                "SQLGREP_CONVERSATION_TABLE", cls.conversation_table
            ),
            conversation_max_messages=getenv_int(
                "SQLGREP_CONVERSATION_MAX_MESSAGES", cls.conversation_max_messages
            ),
            conversation_ttl_days=getenv_int(
                "SQLGREP_CONVERSATION_TTL_DAYS", cls.conversation_ttl_days
            ),
            api_keys_raw=os.getenv("API_KEYS", cls.api_keys_raw),
            app_version=os.getenv("APP_VERSION", cls.app_version),
        )


@lru_cache()
def get_settings() -> Settings:
    return Settings.from_env()
