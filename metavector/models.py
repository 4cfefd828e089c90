"""Model string handling for LiteLLM calls."""

import os
from typing import Optional


def parse_model_string(model_string: str) -> tuple[str, str, Optional[str]]:
    """Parse MetaVector model string format.

    Args:
        model_string: Format like "ollama:nomic-embed-text:latest" or "openai:gpt-4.1"

    Returns:
        Tuple of (provider, model_name, variant)
    """
    parts = model_string.split(":")
    if len(parts) < 2 or not parts[0] or not parts[1]:
        raise ValueError(f"Invalid model string format: {model_string}")

    provider = parts[0]
    model_name = parts[1]
    variant = parts[2] if len(parts) > 2 else None

    return provider, model_name, variant


def get_model_params(model_string: str, api_key: Optional[str] = None, **kwargs) -> dict:
    """Get parameters for direct litellm.acompletion() / litellm.aembedding() calls.

    Args:
        model_string: Model specification like "openai:text-embedding-3-small"
        api_key: Provider credential passed through to LiteLLM
        **kwargs: Additional model parameters (temperature, response_format, etc.)

    Returns:
        Dict with "model" key and all parameters ready for LiteLLM

    Examples:
        >>> params = get_model_params("openai:gpt-4o-mini", api_key="sk-x", temperature=0.7)
        >>> params["model"]
        'openai/gpt-4o-mini'
        >>> params["temperature"]
        0.7
    """
    provider, model_name, variant = parse_model_string(model_string)

    params = dict(kwargs)
    if api_key:
        params["api_key"] = api_key

    if provider == "ollama":
        # Ollama: use full model name with variant
        full_model_name = f"{model_name}:{variant}" if variant else model_name
        params["model"] = f"ollama/{full_model_name}"
        params.setdefault("api_base", os.getenv("OLLAMA_BASE_URL", "http://localhost:11434"))

    elif provider == "openai":
        params["model"] = f"openai/{model_name}"

    elif provider == "anthropic":
        params["model"] = f"anthropic/{model_name}"

    elif provider == "google":
        params["model"] = f"gemini/{model_name}"

    else:
        # Fallback: try LiteLLM with the provider prefix
        params["model"] = f"{provider}/{model_name}"

    return params
