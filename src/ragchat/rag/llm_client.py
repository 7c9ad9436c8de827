"""LiteLLM client wrapper: API key validation, completion, streaming deltas.

All model calls in the engine route through this module. LiteLLM's own
retry is used for the non-streaming call (num_retries); a streamed response
is never retried because deltas may already have been shown.
Every provider failure surfaces as ModelCallError.
"""

from __future__ import annotations

import os
from collections.abc import AsyncIterator

import litellm

from ragchat.errors import ModelCallError

# Disable LiteLLM verbose logging unless explicitly enabled
litellm.suppress_debug_info = True
litellm.set_verbose = False  # type: ignore[assignment]


# ------------------------------------------------------------------
# Provider → env var mapping for API key validation
# ------------------------------------------------------------------

_PROVIDER_ENV: dict[str, str | None] = {
    "openrouter": "OPENROUTER_API_KEY",
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "google": "GOOGLE_API_KEY",
    "mistral": "MISTRAL_API_KEY",
    "groq": "GROQ_API_KEY",
    "ollama": None,  # Local, no key required
    "ollama_chat": None,
}


def provider_of(model: str) -> str:
    return model.split("/")[0].lower() if "/" in model else "openai"


def validate_api_key(model: str, api_key: str | None = None) -> None:
    """Check that a key is available for *model*.

    An explicit *api_key* always satisfies the check; otherwise the
    provider's environment variable must be set.

    Raises:
        EnvironmentError: If no key is available.
    """
    if api_key:
        return

    provider = provider_of(model)
    env_var = _PROVIDER_ENV.get(provider, f"{provider.upper()}_API_KEY")

    if env_var is None:
        return

    if not os.getenv(env_var):
        raise EnvironmentError(
            f"API key not found for provider '{provider}'. "
            f"Set the {env_var} environment variable."
        )


async def complete(
    model: str,
    messages: list[dict],
    *,
    api_key: str | None = None,
    max_tokens: int = 1024,
    temperature: float = 0.7,
    num_retries: int = 2,
) -> str:
    """Non-streaming call. Returns the first choice's content.

    Raises:
        ModelCallError: On API failure after retries or an empty choice list.
    """
    try:
        response = await litellm.acompletion(
            model=model,
            messages=messages,
            max_tokens=max_tokens,
            temperature=temperature,
            num_retries=num_retries,
            api_key=api_key,
        )
    except Exception as exc:
        raise ModelCallError(f"Model call to '{model}' failed: {exc}") from exc

    if not response.choices:
        raise ModelCallError(f"Model '{model}' returned no choices.")
    return response.choices[0].message.content or ""


async def stream(
    model: str,
    messages: list[dict],
    *,
    api_key: str | None = None,
    max_tokens: int = 1024,
    temperature: float = 0.7,
) -> AsyncIterator[str]:
    """Streaming call. Yields non-empty text deltas in arrival order.

    Raises:
        ModelCallError: If the request or the stream read fails.
    """
    try:
        response = await litellm.acompletion(
            model=model,
            messages=messages,
            max_tokens=max_tokens,
            temperature=temperature,
            stream=True,
            api_key=api_key,
        )
    except Exception as exc:
        raise ModelCallError(f"Model call to '{model}' failed: {exc}") from exc

    try:
        async for part in response:
            if not part.choices:
                continue
            delta = part.choices[0].delta.content
            if delta:
                yield delta
    except Exception as exc:
        raise ModelCallError(f"Stream from '{model}' broke off: {exc}") from exc
