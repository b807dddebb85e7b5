"""Streaming reply generation."""
import logging
from typing import AsyncIterator, Dict, List, Optional, Sequence

import openai
from openai import AsyncOpenAI

from companion.core.config import settings
from companion.core.errors import GenerationFailure, UpstreamQuotaExhausted
from companion.services.speech.stt import is_quota_error
from companion.services.turn.models import HistoryMessage

logger = logging.getLogger(__name__)


def build_messages(
    system_prompt: str,
    history: Sequence[HistoryMessage],
    transcript: str,
    max_history: int,
) -> List[Dict[str, str]]:
    """System prompt, the most recent history messages, then the new user turn."""
    messages = [{"role": "system", "content": system_prompt}]
    recent = list(history)[-max_history:] if max_history > 0 else []
    messages.extend({"role": m.role, "content": m.content} for m in recent)
    messages.append({"role": "user", "content": transcript})
    return messages


class ReplyGenerator:
    """Service for streaming persona replies from the chat model."""

    def __init__(self, client: Optional[AsyncOpenAI] = None):
        self.client = client or AsyncOpenAI(api_key=settings.openai_api_key)

    async def stream_reply(
        self,
        system_prompt: str,
        history: Sequence[HistoryMessage],
        transcript: str,
    ) -> AsyncIterator[str]:
        """
        Stream reply tokens for the user's transcript.

        Yields:
            Non-empty content deltas in arrival order
        """
        messages = build_messages(
            system_prompt, history, transcript, settings.max_history_messages
        )
        try:
            stream = await self.client.chat.completions.create(
                model=settings.generation_model,
                messages=messages,
                max_tokens=settings.generation_max_tokens,
                temperature=settings.generation_temperature,
                presence_penalty=settings.presence_penalty,
                frequency_penalty=settings.frequency_penalty,
                stream=True,
            )
            async for chunk in stream:
                if not chunk.choices:
                    continue
                delta = chunk.choices[0].delta.content
                if delta:
                    yield delta
        except openai.OpenAIError as e:
            logger.error(
                f"[LLM] Generation failed: {type(e).__name__}: {str(e)}",
                exc_info=True,
            )
            if is_quota_error(e):
                raise UpstreamQuotaExhausted("Generation quota exhausted") from e
            raise GenerationFailure("Reply generation failed") from e
