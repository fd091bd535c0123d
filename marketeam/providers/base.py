"""Base model client — the contract every LLM backend implements."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field


@dataclass
class MessageRequest:
    model: str
    system: str
    messages: list[dict]
    max_tokens: int = 4096
    timeout_ms: int = 60000


@dataclass
class MessageResult:
    content: str
    model: str
    input_tokens: int = 0
    output_tokens: int = 0
    stop_reason: str | None = None
    duration_ms: int = 0
    raw: dict = field(default_factory=dict, repr=False)


class ModelClient(ABC):
    """Sends one request to a model and returns its text and token usage.

    Implementations raise on transport or timeout failures; callers in the
    review path catch those and degrade.
    """

    @abstractmethod
    async def create_message(self, request: MessageRequest) -> MessageResult:
        """Call the model once."""
