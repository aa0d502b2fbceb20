"""
LLM configuration for the semantic receipt validator.

Supports:
- OpenAI (cloud API, default)
- Ollama (local models over HTTP)
- none (validator disabled, fail-safe assessment always used)
"""

import logging
import os
from dataclasses import dataclass
from typing import Literal, Optional

from openai import OpenAI

logger = logging.getLogger(__name__)


@dataclass
class LLMConfig:
    """Configuration for the semantic validation oracle."""

    provider: Literal["openai", "ollama", "none"] = "openai"

    # OpenAI settings
    openai_api_key: Optional[str] = None
    openai_model: str = "gpt-4o-mini"

    # Ollama settings
    ollama_base_url: str = "http://localhost:11434"
    ollama_model: str = "llama3.2:3b"

    # Common settings
    max_tokens: int = 800
    temperature: float = 0.0
    timeout: int = 30

    @classmethod
    def from_env(cls) -> "LLMConfig":
        """Load config from environment variables."""
        provider = os.getenv("LLM_PROVIDER", "openai").lower()

        return cls(
            provider=provider,
            openai_api_key=os.getenv("OPENAI_API_KEY"),
            openai_model=os.getenv("OPENAI_MODEL", "gpt-4o-mini"),
            ollama_base_url=os.getenv("OLLAMA_BASE_URL", "http://localhost:11434"),
            ollama_model=os.getenv("OLLAMA_MODEL", "llama3.2:3b"),
            max_tokens=int(os.getenv("LLM_MAX_TOKENS", "800")),
            temperature=float(os.getenv("LLM_TEMPERATURE", "0.0")),
            timeout=int(os.getenv("LLM_TIMEOUT", "30")),
        )


def get_llm_client(config: Optional[LLMConfig] = None):
    """
    Get the OpenAI client for the configured provider.

    Ollama is reached over plain HTTP and needs no client object, so this
    returns None for "ollama" and "none" as well as for a missing API key.
    """
    if config is None:
        config = LLMConfig.from_env()

    if config.provider != "openai":
        return None

    if not config.openai_api_key:
        logger.warning("OPENAI_API_KEY not set - semantic validation will use fail-safe defaults")
        return None

    return OpenAI(api_key=config.openai_api_key, timeout=config.timeout)
