import os
from typing import Final


def _float_env(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except ValueError:
        return default


def _int_env(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except ValueError:
        return default


class _Config:
    def __init__(self) -> None:
        # Limits
        self.rate_limit: str = os.getenv("RATE_LIMIT", "30/minute")

        # HTTP behavior
        self.user_agent: str = os.getenv("USER_AGENT", "CityExplorer-Server")
        self.http_timeout_sec: float = _float_env("HTTP_TIMEOUT_SEC", 10.0)

        # Model provider
        self.openai_api_key: str | None = os.getenv("OPENAI_API_KEY") or os.getenv("OPEN_AI_KEY")
        self.openai_model: str = os.getenv("OPENAI_MODEL", "gpt-4o-mini")

        # Routing / geocoding / places
        self.geoapify_key: str | None = os.getenv("GEOAPIFY_KEY")
        self.geoapify_base: str = os.getenv("GEOAPIFY_BASE", "https://api.geoapify.com")

        # Store
        self.redis_url: str | None = os.getenv("REDIS_URL")
        self.redis_host: str = os.getenv("REDIS_HOST", "127.0.0.1")
        self.redis_port: int = _int_env("REDIS_PORT", 6379)

        # Chat
        self.history_limit: int = _int_env("CHAT_HISTORY_LIMIT", 20)
        self.conversation_ttl_sec: int = _int_env("CONVERSATION_TTL_SEC", 60 * 60)
        self.session_ttl_sec: int = _int_env("SESSION_TTL_SEC", 5 * 60)
        self.max_tool_rounds: int = _int_env("CHAT_MAX_TOOL_ROUNDS", 5)

        # Places cache
        self.places_cache_ttl_sec: int = _int_env("PLACES_CACHE_TTL_SEC", 60 * 60 * 24)
        self.cache_failure_threshold: int = _int_env("CACHE_FAILURE_THRESHOLD", 3)
        self.cache_recovery_sec: float = _float_env("CACHE_RECOVERY_SEC", 30.0)


CONFIG: Final[_Config] = _Config()
