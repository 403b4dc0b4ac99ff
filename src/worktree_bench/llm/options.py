"""Per-model invocation options handed to work units."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping

from worktree_bench.config import ModelConfig

# Provider name -> environment variable holding its API key
PROVIDER_ENV_KEYS: dict[str, str] = {
    "anthropic": "ANTHROPIC_API_KEY",
    "openai": "OPENAI_API_KEY",
    "openrouter": "OPENROUTER_API_KEY",
    "google": "GOOGLE_API_KEY",
    "gemini": "GEMINI_API_KEY",
    "zai": "ZAI_API_KEY",
}


@dataclass(frozen=True)
class ModelOptions:
    """What a work unit needs to talk to one model."""
    provider: str
    model: str
    api_key: str | None = None
    reasoning: str | None = None

    @property
    def model_id(self) -> str:
        return f"{self.provider}:{self.model}"


def credential_env_key(provider: str, env_keys: Mapping[str, str] | None = None) -> str:
    keys = PROVIDER_ENV_KEYS if env_keys is None else env_keys
    return keys.get(provider, f"{provider.upper()}_API_KEY")


def build_model_options(
    model: ModelConfig,
    env_keys: Mapping[str, str] | None = None,
    environ: Mapping[str, str] | None = None,
) -> ModelOptions:
    env = os.environ if environ is None else environ
    return ModelOptions(
        provider=model.provider,
        model=model.model,
        api_key=env.get(credential_env_key(model.provider, env_keys)),
        reasoning=str(model.reasoning_tokens) if model.reasoning_tokens is not None else None,
    )
