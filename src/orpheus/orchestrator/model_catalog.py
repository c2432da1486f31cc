"""Frontier model ids per provider.

Update this table when providers release new models.
"""

from __future__ import annotations

FRONTIER_MODELS: dict[str, dict[str, str]] = {
    "openai": {
        "flagship": "gpt-4o",
        "reasoning": "o1",
    },
    "anthropic": {
        "flagship": "claude-opus-4-5-20251101",
        "execution": "claude-sonnet-4-5-20250929",
    },
    "google": {
        "flagship": "gemini-2.5-pro-preview-06-05",
        "fast": "gemini-2.0-flash-exp",
    },
}

CATALOG_VERIFIED_AT = "2024-12-15"

# provider that serves each backend id
BACKEND_PROVIDERS: dict[str, str] = {
    "codex": "openai",
    "sonnet": "anthropic",
    "gemini": "google",
}


def get_model(provider: str, use_case: str = "flagship") -> str:
    """Return the model for ``provider``/``use_case``, falling back to the flagship."""

    try:
        models = FRONTIER_MODELS[provider]
    except KeyError as error:
        raise ValueError(
            f"Unknown model provider: {provider!r}. Use one of {tuple(FRONTIER_MODELS)}.",
        ) from error
    return models.get(use_case, models["flagship"])
