"""Streaming generation sessions against configured AI providers."""

import asyncio
import logging
from enum import Enum
from typing import AsyncIterator, Awaitable, Callable, List, Optional, Sequence, Union

import httpx

from pastego.models.schemas import (
    AiProvider,
    ClipRecord,
    GenerationResult,
    StreamEvent,
    Template,
)
from .classifier import classify
from .errors import (
    AuthError,
    GenerationError,
    MalformedStreamFrame,
    TransportError,
    ValidationError,
)
from .prompt import assemble
from .providers import ProviderRegistry
from .streaming import decoder_for
from .templates import TemplateStore

logger = logging.getLogger(__name__)

EventCallback = Callable[[StreamEvent], Union[None, Awaitable[None]]]


class SessionState(str, Enum):
    IDLE = "idle"
    ASSEMBLING = "assembling"
    STREAMING = "streaming"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATES = (SessionState.COMPLETED, SessionState.FAILED, SessionState.CANCELLED)


def _status_error(status_code: int, body: str) -> TransportError:
    message = f"API error {status_code}: {body[:500]}"
    if status_code in (401, 403):
        return AuthError(message, status_code=status_code)
    return TransportError(message, status_code=status_code)


class GenerationSession:
    """One streaming request: fragment events in arrival order, then one terminal event.

    The output buffer keeps whatever arrived before a failure. Once cancelled,
    no further fragments are appended or delivered.
    """

    def __init__(
        self,
        provider: AiProvider,
        prompt: Optional[str] = None,
        timeout: float = 30.0,
        connect_timeout: float = 10.0,
        claude_max_tokens: int = 4096,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.provider = provider
        self.prompt = prompt
        self.timeout = timeout
        self.connect_timeout = connect_timeout
        self.claude_max_tokens = claude_max_tokens
        self.transport = transport

        self.state = SessionState.IDLE
        self.error: Optional[GenerationError] = None
        self._chunks: List[str] = []
        self._queue: asyncio.Queue = asyncio.Queue()
        self._task: Optional[asyncio.Task] = None

    @property
    def output(self) -> str:
        return "".join(self._chunks)

    @property
    def is_active(self) -> bool:
        return self.state not in TERMINAL_STATES

    def prepare(
        self,
        items: Sequence[ClipRecord],
        template: Optional[Template] = None,
        extra_instruction: str = "",
    ) -> str:
        """Assemble the prompt from selected clips."""
        if self.state is not SessionState.IDLE:
            raise ValidationError(f"Cannot assemble a prompt in state {self.state.value}")
        self.state = SessionState.ASSEMBLING
        self.prompt = assemble(items, template, extra_instruction)
        return self.prompt

    def start(self) -> "GenerationSession":
        """Open the streaming request in a background task."""
        if self.state not in (SessionState.IDLE, SessionState.ASSEMBLING):
            raise ValidationError(f"Session already {self.state.value}")
        if not self.prompt:
            raise ValidationError("Prompt is empty")

        self.state = SessionState.STREAMING
        self._task = asyncio.create_task(self._run())
        return self

    def cancel(self) -> bool:
        """Stop delivery now and tear down the connection. False if already finished."""
        if not self.is_active:
            return False

        self.state = SessionState.CANCELLED
        self._queue.put_nowait(StreamEvent.cancelled())
        if self._task is not None and not self._task.done():
            self._task.cancel()
        logger.info(f"Generation with {self.provider.name} cancelled")
        return True

    async def wait(self) -> None:
        """Wait until the background request has fully shut down."""
        if self._task is None:
            return
        await asyncio.gather(self._task, return_exceptions=True)

    async def events(self) -> AsyncIterator[StreamEvent]:
        """Yield fragments as they arrive, ending with the terminal event."""
        while True:
            event = await self._queue.get()
            if self.state is SessionState.CANCELLED and not event.is_terminal:
                continue
            yield event
            if event.is_terminal:
                return

    async def run(self, on_event: Optional[EventCallback] = None) -> GenerationResult:
        """Start if needed, consume all events and summarize the outcome."""
        if self.state in (SessionState.IDLE, SessionState.ASSEMBLING):
            self.start()

        async for event in self.events():
            if on_event is not None:
                result = on_event(event)
                if asyncio.iscoroutine(result):
                    await result

        await self.wait()
        return self.result()

    def result(self) -> GenerationResult:
        return GenerationResult(
            state=self.state.value,
            output=self.output,
            error=str(self.error) if self.error else None,
            error_kind=self.error.kind if self.error else None,
        )

    def _deliver(self, text: str) -> None:
        if self.state is not SessionState.STREAMING:
            return
        self._chunks.append(text)
        self._queue.put_nowait(StreamEvent.fragment(text))

    def _finish(self, state: SessionState, event: StreamEvent) -> None:
        if self.state is not SessionState.STREAMING:
            return
        self.state = state
        self._queue.put_nowait(event)

    def _fail(self, error: GenerationError) -> None:
        if self.state is not SessionState.STREAMING:
            return
        self.error = error
        logger.warning(
            f"Generation with {self.provider.name} failed after "
            f"{len(self.output)} chars: {error}"
        )
        self._finish(SessionState.FAILED, StreamEvent.error(error.kind, str(error)))

    async def _run(self) -> None:
        timeout = httpx.Timeout(self.timeout, connect=self.connect_timeout)

        try:
            decoder = decoder_for(self.provider.kind, self.claude_max_tokens)
            request = decoder.build_request(self.provider, self.prompt)

            async with httpx.AsyncClient(timeout=timeout, transport=self.transport) as client:
                async with client.stream(
                    "POST", request.url, headers=request.headers, json=request.body
                ) as response:
                    if not response.is_success:
                        body = (await response.aread()).decode("utf-8", errors="replace")
                        raise _status_error(response.status_code, body)

                    async for line in response.aiter_lines():
                        if self.state is not SessionState.STREAMING:
                            return
                        try:
                            frame = decoder.decode_line(line.strip())
                        except MalformedStreamFrame as e:
                            logger.warning(f"Skipping malformed {decoder.kind} frame: {e}")
                            continue

                        for text in frame.fragments:
                            self._deliver(text)
                        if frame.done:
                            break

            self._finish(SessionState.COMPLETED, StreamEvent.done())

        except GenerationError as e:
            self._fail(e)
        except httpx.TimeoutException as e:
            self._fail(TransportError(f"Request timed out: {e!r}"))
        except httpx.HTTPError as e:
            self._fail(TransportError(f"Request failed: {e}"))
        except Exception as e:
            logger.exception("Unexpected generation error")
            self._fail(GenerationError(f"Unexpected error: {e}"))


class GenerationController:
    """Runs generations for one consumer, keeping at most one session streaming."""

    def __init__(
        self,
        registry: ProviderRegistry,
        templates: Optional[TemplateStore] = None,
        timeout: float = 30.0,
        connect_timeout: float = 10.0,
        claude_max_tokens: int = 4096,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.registry = registry
        self.templates = templates
        self.timeout = timeout
        self.connect_timeout = connect_timeout
        self.claude_max_tokens = claude_max_tokens
        self.transport = transport
        self.current: Optional[GenerationSession] = None
        self._lock = asyncio.Lock()

    async def cancel(self) -> bool:
        """Cancel the active session, if any, and wait for its connection to close."""
        async with self._lock:
            return await self._cancel_current()

    async def _cancel_current(self) -> bool:
        session = self.current
        if session is None or not session.cancel():
            return False
        await session.wait()
        return True

    async def start(
        self,
        items: Sequence[ClipRecord],
        template: Optional[Template] = None,
        extra_instruction: str = "",
        provider_id: Optional[str] = None,
    ) -> GenerationSession:
        """Cancel any prior session, resolve the provider and begin streaming.

        Concurrent calls are serialized so only the last one is left streaming.
        """
        async with self._lock:
            await self._cancel_current()
            provider = await self.registry.resolve(provider_id)

            session = GenerationSession(
                provider,
                timeout=self.timeout,
                connect_timeout=self.connect_timeout,
                claude_max_tokens=self.claude_max_tokens,
                transport=self.transport,
            )
            session.prepare(items, template, extra_instruction)
            session.start()
            self.current = session

        logger.info(
            f"Generating with {provider.name} ({provider.kind.value}) "
            f"from {len(items)} items"
        )
        return session

    async def generate(
        self,
        items: Sequence[ClipRecord],
        template: Optional[Template] = None,
        extra_instruction: str = "",
        provider_id: Optional[str] = None,
        on_event: Optional[EventCallback] = None,
    ) -> GenerationResult:
        session = await self.start(items, template, extra_instruction, provider_id)
        return await session.run(on_event)

    async def quick_template(
        self,
        template_id: str,
        clipboard_text: str,
        provider_id: Optional[str] = None,
    ) -> GenerationSession:
        """Hotkey trigger: run a template over the clipboard text as a one-item selection."""
        if self.templates is None:
            raise ValidationError("No template store configured")
        template = await self.templates.require(template_id)

        if not clipboard_text or not clipboard_text.strip():
            raise ValidationError("Clipboard is empty, copy some text first")

        clip_type, digest = classify(clipboard_text)
        item = ClipRecord(
            id="quick-template",
            content=clipboard_text,
            content_hash=digest,
            clip_type=clip_type,
        )
        return await self.start([item], template, "", provider_id)
