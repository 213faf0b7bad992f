"""
Settings for django_ai_agents.

Projects override the defaults with a single ``AI_AGENTS`` dict in their Django settings:

    AI_AGENTS = {
        "CHUNK_SIZE": 1500,
        "MAX_TOOL_ITERATIONS": 5,
    }
"""

from typing import Any

from django.conf import settings
from django.core.exceptions import ImproperlyConfigured

SETTINGS_NAME = "AI_AGENTS"

DEFAULTS: dict[str, Any] = {
    # Embedding pipeline
    "CHUNK_SIZE": 2000,
    "EMBEDDING_BATCH_SIZE": 100,
    # Agent orchestration
    "MAX_TOOL_ITERATIONS": 10,
    "PROVIDER_MAX_RETRIES": 3,
    "PROVIDER_RETRY_INITIAL_WAIT": 1.0,
    "PROVIDER_RETRY_MAX_WAIT": 30.0,
    "PROVIDER_TIMEOUT": 60.0,
    "TOOL_TIMEOUT": 30.0,
    # Structured extraction
    "EXTRACTION_MAX_RETRIES": 2,
    # Approximate index
    "FAISS_NLIST": 16,
}


def _user_settings() -> dict[str, Any]:
    return getattr(settings, SETTINGS_NAME, None) or {}


def validate_settings():
    unknown = set(_user_settings()) - set(DEFAULTS)
    if unknown:
        raise ImproperlyConfigured(
            f"Unknown {SETTINGS_NAME} setting(s): {', '.join(sorted(unknown))}"
        )


def get_setting(name: str) -> Any:
    if name not in DEFAULTS:
        raise ImproperlyConfigured(f"Unknown {SETTINGS_NAME} setting: {name}")
    return _user_settings().get(name, DEFAULTS[name])
