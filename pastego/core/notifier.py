"""Fire-and-forget change notifications."""

import asyncio
import inspect
import logging
from typing import Any, Callable, Set

logger = logging.getLogger(__name__)


class ChangeNotifier:
    """Delivers payloads to subscribers without blocking the emitter.

    Subscribers may be plain callables or coroutine functions. Delivery is
    scheduled on the running loop; subscriber failures are logged and dropped.
    """

    def __init__(self, name: str = "change"):
        self.name = name
        self._subscribers: list = []
        self._pending: Set[asyncio.Task] = set()

    def subscribe(self, callback: Callable[[Any], Any]) -> Callable[[], None]:
        self._subscribers.append(callback)

        def unsubscribe():
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def emit(self, payload: Any) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None

        for callback in list(self._subscribers):
            if loop is None:
                self._deliver(callback, payload)
            else:
                loop.call_soon(self._deliver, callback, payload)

    def _deliver(self, callback: Callable[[Any], Any], payload: Any) -> None:
        try:
            result = callback(payload)
        except Exception:
            logger.exception(f"{self.name} subscriber {callback!r} failed")
            return

        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._pending.add(task)
            task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"{self.name} subscriber failed: {exc!r}")

    async def flush(self) -> None:
        """Let scheduled deliveries run and wait for async subscribers."""
        await asyncio.sleep(0)
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
