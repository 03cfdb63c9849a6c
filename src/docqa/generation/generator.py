"""Streaming text generation through the OpenAI chat completions API."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import AsyncGenerator, Awaitable, Protocol, TypeVar

import openai
from openai import AsyncOpenAI

from docqa.errors import GenerationCancelled, GenerationServiceError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class TextGenerator(Protocol):
    """Produces a cancellable token stream for one system/user exchange."""

    def stream(
        self, system_prompt: str, user_message: str, *, cancel_event: asyncio.Event
    ) -> AsyncGenerator[str, None]: ...


async def race_cancel(awaitable: Awaitable[T], cancel_event: asyncio.Event) -> T:
    """Await ``awaitable`` unless ``cancel_event`` is set first.

    On cancellation the pending call is cancelled and GenerationCancelled is
    raised, so a suspended request is released right away.
    """
    if cancel_event.is_set():
        if asyncio.iscoroutine(awaitable):
            awaitable.close()
        raise GenerationCancelled("Generation cancelled before the call")

    call = asyncio.ensure_future(awaitable)
    waiter = asyncio.ensure_future(cancel_event.wait())
    try:
        await asyncio.wait({call, waiter}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        call.cancel()
        raise
    finally:
        waiter.cancel()

    if not call.done():
        call.cancel()
        try:
            await call
        except (asyncio.CancelledError, StopAsyncIteration):
            pass
        except Exception:
            logger.debug("Aborted generation call raised during cancellation", exc_info=True)
        raise GenerationCancelled("Generation cancelled")
    return call.result()


@dataclass(slots=True)
class GenerationConfig:
    model: str = "gpt-4o-mini"
    temperature: float = 0.7


class ChatGenerator:
    """Streams chat completion deltas, aborting the HTTP stream on cancel."""

    def __init__(
        self, config: GenerationConfig | None = None, client: AsyncOpenAI | None = None
    ) -> None:
        self.config = config or GenerationConfig()
        self._client = client or AsyncOpenAI()

    async def stream(
        self, system_prompt: str, user_message: str, *, cancel_event: asyncio.Event
    ) -> AsyncGenerator[str, None]:
        try:
            response = await race_cancel(
                self._client.chat.completions.create(
                    model=self.config.model,
                    messages=[
                        {"role": "system", "content": system_prompt},
                        {"role": "user", "content": user_message},
                    ],
                    stream=True,
                    temperature=self.config.temperature,
                ),
                cancel_event,
            )
        except openai.OpenAIError as exc:
            raise GenerationServiceError(f"Failed to get AI response: {exc}") from exc

        iterator = response.__aiter__()
        try:
            while True:
                try:
                    chunk = await race_cancel(iterator.__anext__(), cancel_event)
                except StopAsyncIteration:
                    return
                except openai.OpenAIError as exc:
                    raise GenerationServiceError(f"Generation stream failed: {exc}") from exc
                if not chunk.choices:
                    continue
                text = chunk.choices[0].delta.content or ""
                if text:
                    yield text
        finally:
            await response.close()
