"""Model client layer — the request/response contract, tiers and pricing."""

from marketeam.providers.base import MessageRequest, MessageResult, ModelClient
from marketeam.providers.factory import create_client
from marketeam.providers.tiers import MODEL_MAP, estimate_cost, model_for, select_model_tier

__all__ = [
    "MODEL_MAP",
    "MessageRequest",
    "MessageResult",
    "ModelClient",
    "create_client",
    "estimate_cost",
    "model_for",
    "select_model_tier",
]
