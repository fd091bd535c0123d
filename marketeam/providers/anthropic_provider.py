"""Anthropic (Claude) model client."""

from __future__ import annotations

import logging
import time

import anthropic

from marketeam.config import ANTHROPIC_API_KEY
from marketeam.providers.base import MessageRequest, MessageResult, ModelClient

logger = logging.getLogger(__name__)


class AnthropicClient(ModelClient):
    def __init__(self, api_key: str | None = None, client: anthropic.AsyncAnthropic | None = None):
        self.client = client or anthropic.AsyncAnthropic(api_key=api_key or ANTHROPIC_API_KEY)

    async def create_message(self, request: MessageRequest) -> MessageResult:
        started = time.monotonic()
        try:
            raw = await self.client.messages.create(
                model=request.model,
                system=request.system,
                messages=request.messages,
                max_tokens=request.max_tokens,
                timeout=request.timeout_ms / 1000,
            )
        except anthropic.APIError as e:
            logger.error(f"Anthropic API error ({request.model}): {e}")
            raise

        text_parts = [block.text for block in raw.content if block.type == "text"]
        return MessageResult(
            content="\n".join(text_parts),
            model=raw.model,
            input_tokens=raw.usage.input_tokens,
            output_tokens=raw.usage.output_tokens,
            stop_reason=raw.stop_reason,
            duration_ms=int((time.monotonic() - started) * 1000),
        )
