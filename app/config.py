import os
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from .errors import ConfigError


DEFAULT_MODEL = "gemini-2.0-flash-exp"


def _env_str(name: str, default: str = "") -> str:
    return os.getenv(name, default).strip()


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except Exception:
        return default


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except Exception:
        return default


def _env_list(name: str, default: str = "") -> List[str]:
    raw = _env_str(name, default)
    return [item.strip() for item in raw.split(",") if item.strip()]


def _parse_static_tokens(raw: str) -> Dict[str, str]:
    """Parse `token:user_id,token2:user_id2` into a mapping."""
    out: Dict[str, str] = {}
    for pair in raw.split(","):
        token, sep, user_id = pair.strip().partition(":")
        if sep and token.strip() and user_id.strip():
            out[token.strip()] = user_id.strip()
    return out


@dataclass
class Settings:
    """Process configuration, read once at startup and passed into create_app()."""

    ai_provider: str = "google"
    gemini_api_key: str = ""
    default_model: str = DEFAULT_MODEL
    max_output_tokens: int = 0
    ai_timeout_seconds: float = 30.0

    store_provider: str = "supabase"
    auth_provider: str = "supabase"
    supabase_url: str = ""
    supabase_anon_key: str = ""
    supabase_service_key: str = ""
    supabase_timeout_seconds: float = 10.0
    static_tokens: Dict[str, str] = field(default_factory=dict)

    history_limit: int = 20
    cors_origins: List[str] = field(default_factory=lambda: ["*"])
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            ai_provider=(_env_str("AI_PROVIDER") or "google").lower(),
            gemini_api_key=_env_str("GEMINI_API_KEY") or _env_str("GOOGLE_API_KEY"),
            default_model=_env_str("AI_CHAT_MODEL") or DEFAULT_MODEL,
            max_output_tokens=_env_int("AI_CHAT_MAX_TOKENS", 0),
            ai_timeout_seconds=_env_float("AI_HTTP_TIMEOUT_SECONDS", 30.0),
            store_provider=(_env_str("STORE_PROVIDER") or "supabase").lower(),
            auth_provider=(_env_str("AUTH_PROVIDER") or "supabase").lower(),
            supabase_url=_env_str("SUPABASE_URL").rstrip("/"),
            supabase_anon_key=_env_str("SUPABASE_ANON_KEY"),
            supabase_service_key=_env_str("SUPABASE_SERVICE_ROLE_KEY"),
            supabase_timeout_seconds=_env_float("SUPABASE_TIMEOUT_SECONDS", 10.0),
            static_tokens=_parse_static_tokens(_env_str("AUTH_STATIC_TOKENS")),
            history_limit=max(1, _env_int("CHAT_HISTORY_LIMIT", 20)),
            cors_origins=_env_list("CORS_ALLOW_ORIGINS", "*") or ["*"],
            log_level=(_env_str("LOG_LEVEL") or "INFO").upper(),
        )

    @property
    def uses_gemini(self) -> bool:
        return self.ai_provider in ("google", "gemini")

    @property
    def uses_supabase(self) -> bool:
        return self.store_provider == "supabase" or self.auth_provider == "supabase"

    @property
    def supabase_data_key(self) -> str:
        return self.supabase_service_key or self.supabase_anon_key

    def validate(self) -> "Settings":
        """Raise ConfigError when a selected backend is missing its credentials."""
        problems: List[str] = []
        if self.uses_gemini and not self.gemini_api_key:
            problems.append("GEMINI_API_KEY is required")
        if self.uses_supabase and not (self.supabase_url and self.supabase_anon_key):
            problems.append("SUPABASE_URL and SUPABASE_ANON_KEY are required")
        if self.ai_provider not in ("google", "gemini", "mock", "test"):
            problems.append(f"unknown AI_PROVIDER {self.ai_provider!r}")
        if self.store_provider not in ("supabase", "memory"):
            problems.append(f"unknown STORE_PROVIDER {self.store_provider!r}")
        if self.auth_provider not in ("supabase", "static"):
            problems.append(f"unknown AUTH_PROVIDER {self.auth_provider!r}")
        if problems:
            raise ConfigError("; ".join(problems))
        return self


def load_settings(env_file: Optional[str] = None) -> Settings:
    """Load .env (outside pytest) and build validated settings."""
    if "PYTEST_CURRENT_TEST" not in os.environ:
        from dotenv import load_dotenv

        load_dotenv(env_file)
    return Settings.from_env().validate()
