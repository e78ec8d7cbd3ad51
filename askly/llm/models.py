"""Which Claude model answers chats and which runs background analysis.

Both roles can be switched at runtime from the terminal with ``/model``.
"""

import logging
from enum import StrEnum

from askly.config import settings

logger = logging.getLogger(__name__)

MODEL_MAP: dict[str, str] = {
    "haiku": "claude-haiku-4-5-20251001",
    "sonnet": "claude-sonnet-4-5-20250929",
    "opus": "claude-opus-4-1-20250805",
}

# Reverse lookup: full model string → friendly name
FRIENDLY_NAMES: dict[str, str] = {v: k for k, v in MODEL_MAP.items()}


class ModelRole(StrEnum):
    CHAT = "chat"
    REASONING = "reasoning"


# Used when the configured default is not a known model
_FALLBACKS: dict[ModelRole, str] = {
    ModelRole.CHAT: MODEL_MAP["sonnet"],
    ModelRole.REASONING: MODEL_MAP["haiku"],
}


def resolve_model(name_or_id: str) -> str | None:
    """Resolve a friendly name (any case) or a full model ID. Returns the ID or None."""
    name = name_or_id.strip()
    if name.lower() in MODEL_MAP:
        return MODEL_MAP[name.lower()]
    if name in FRIENDLY_NAMES:
        return name
    return None


def friendly(model_id: str) -> str:
    """Return the friendly name for a model ID, or the ID itself."""
    return FRIENDLY_NAMES.get(model_id, model_id)


class ModelManager:
    """Singleton holding the active model for each role."""

    _instance: "ModelManager | None" = None

    def __init__(self) -> None:
        defaults = {
            ModelRole.CHAT: settings.default_chat_model,
            ModelRole.REASONING: settings.default_reasoning_model,
        }
        self._models: dict[ModelRole, str] = {
            role: resolve_model(name) or _FALLBACKS[role] for role, name in defaults.items()
        }
        logger.info(
            "Models: %s",
            ", ".join(f"{role}={friendly(model)}" for role, model in self._models.items()),
        )

    @classmethod
    def get(cls) -> "ModelManager":
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @classmethod
    def _reset(cls) -> None:
        """Reset the singleton (for testing)."""
        cls._instance = None

    def get_model(self, role: ModelRole) -> str:
        return self._models[role]

    def set_model(self, role: ModelRole, name: str) -> str | None:
        """Switch *role* to the model called *name*. Returns the full ID, or None if unknown."""
        model_id = resolve_model(name)
        if model_id is None:
            return None
        self._models[role] = model_id
        logger.info("%s model → %s", role.value.capitalize(), friendly(model_id))
        return model_id

    def get_chat_model(self) -> str:
        return self.get_model(ModelRole.CHAT)

    def get_reasoning_model(self) -> str:
        return self.get_model(ModelRole.REASONING)
