"""
Assistant Configuration

Reads configuration from environment variables with sensible defaults.
"""

import os
from dataclasses import dataclass, field
from typing import Optional


DEFAULT_BLOCKED_TERMS = ("nsfw", "porn", "sex", "kill", "suicide")


def _parse_bool(value: str) -> bool:
    return value.lower() in ("true", "1", "yes")


def _parse_terms(value: Optional[str]) -> tuple[str, ...]:
    if value is None:
        return DEFAULT_BLOCKED_TERMS
    return tuple(t.strip().lower() for t in value.split(",") if t.strip())


@dataclass
class AssistantConfig:
    """Configuration for the streaming assistant."""

    # Provider
    openrouter_api_key: Optional[str] = None
    base_url: str = "https://openrouter.ai/api/v1"
    model: str = "gpt-oss-120b"
    max_tokens: int = 8192
    temperature: float = 0.2
    request_timeout: float = 120.0

    # Pre-condition gate
    rate_limit_per_min: int = 6
    rate_limit_daily: int = 200
    blocked_terms: tuple[str, ...] = field(default=DEFAULT_BLOCKED_TERMS)

    # Conversation
    default_assistant_name: str = "Sparkle AI"
    history_limit: int = 20

    # Mode flags
    dry_run: bool = False
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "AssistantConfig":
        """Load configuration from environment variables."""
        return cls(
            openrouter_api_key=(
                os.environ.get("AI_OPENROUTER_API_KEY") or
                os.environ.get("OPENROUTER_API_KEY")
            ),
            base_url=os.environ.get("AI_BASE_URL", "https://openrouter.ai/api/v1"),
            model=os.environ.get("AI_MODEL", "gpt-oss-120b"),
            max_tokens=int(os.environ.get("AI_MAX_TOKENS", "8192")),
            temperature=float(os.environ.get("AI_TEMPERATURE", "0.2")),
            request_timeout=float(os.environ.get("AI_REQUEST_TIMEOUT", "120")),

            rate_limit_per_min=int(os.environ.get("AI_RATE_LIMIT_PER_MIN", "6")),
            rate_limit_daily=int(os.environ.get("AI_RATE_LIMIT_DAILY", "200")),
            blocked_terms=_parse_terms(os.environ.get("AI_BLOCKED_TERMS")),

            default_assistant_name=os.environ.get("AI_DEFAULT_NAME", "Sparkle AI"),
            history_limit=int(os.environ.get("AI_HISTORY_LIMIT", "20")),

            dry_run=_parse_bool(os.environ.get("AI_DRY_RUN", "false")),
            log_level=os.environ.get("LOG_LEVEL", "INFO").upper(),
        )

    def create_provider(self):
        """
        Create the stream provider for this configuration.

        Dry-run mode streams a canned reply without touching the network.
        """
        if self.dry_run:
            from .providers.mock import MockStreamProvider
            return MockStreamProvider(
                fragments=["This ", "is ", "a ", "dry-run ", "reply."],
                model=f"mock/{self.model}",
                delay=0.05,
            )

        if not self.openrouter_api_key:
            raise ValueError("OPENROUTER_API_KEY not set")

        from .providers.openrouter import OpenRouterStreamProvider
        return OpenRouterStreamProvider(
            api_key=self.openrouter_api_key,
            model=self.model,
            base_url=self.base_url,
            timeout=self.request_timeout,
        )


# Singleton config instance
_config: Optional[AssistantConfig] = None


def get_config() -> AssistantConfig:
    """Get the global assistant config, loading from env if needed."""
    global _config
    if _config is None:
        _config = AssistantConfig.from_env()
    return _config


def reload_config() -> AssistantConfig:
    """Force reload config from environment."""
    global _config
    _config = AssistantConfig.from_env()
    return _config
