"""Background clipboard polling feeding the history store."""

import asyncio
import logging
from typing import Any, Callable, Optional

from pastego.models.schemas import ClipRecord
from .classifier import content_hash
from .clipboard import SystemClipboard, frontmost_app
from .errors import ClipboardReadError
from .notifier import ChangeNotifier
from .storage import HistoryStore

logger = logging.getLogger(__name__)


class ClipboardWatcher:
    """Polls the clipboard and inserts content that changed since the last tick.

    ``last_hash`` is the fingerprint of the most recently observed clipboard
    content; ``self_written_hash`` marks content this process wrote itself so
    reading it back is not recorded as a new clip.
    """

    def __init__(
        self,
        store: HistoryStore,
        clipboard: Optional[Any] = None,
        interval: float = 0.5,
        source_app: Optional[Callable[[], Optional[str]]] = frontmost_app,
    ):
        self.store = store
        self.clipboard = clipboard or SystemClipboard()
        self.interval = interval
        self.source_app = source_app
        self.notifier = ChangeNotifier("clipboard")

        self.last_hash: Optional[str] = None
        self.self_written_hash: Optional[str] = None
        self._writes_pending = 0
        self._running = False
        self._task: Optional[asyncio.Task] = None

    def on_change(self, callback: Callable[[ClipRecord], Any]) -> Callable[[], None]:
        return self.notifier.subscribe(callback)

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def tick(self) -> Optional[ClipRecord]:
        """Poll once. Returns the stored record when new content was captured."""
        try:
            content = await asyncio.to_thread(self.clipboard.read_current)
        except ClipboardReadError as e:
            logger.warning(f"Clipboard read failed: {e}")
            return None

        data = content.data
        if data is None or (isinstance(data, str) and not data.strip()):
            return None

        digest = content_hash(data)
        if digest == self.last_hash:
            return None
        self.last_hash = digest

        if digest == self.self_written_hash:
            self.self_written_hash = None
            logger.debug("Skipping clipboard content written by this process")
            return None

        # A different change only retires the marker once the write has landed
        if not self._writes_pending:
            self.self_written_hash = None

        app = await asyncio.to_thread(self.source_app) if self.source_app else None
        record = await self.store.insert(data, app)
        self.notifier.emit(record)
        return record

    async def write(self, text: str) -> None:
        """Copy text to the clipboard without recording it on the next poll."""
        self.self_written_hash = content_hash(text)
        self._writes_pending += 1
        try:
            await asyncio.to_thread(self.clipboard.write, text)
        finally:
            self._writes_pending -= 1

    async def run(self) -> None:
        logger.info(f"Clipboard watcher started (every {self.interval}s)")
        while self._running:
            try:
                await self.tick()
            except Exception:
                logger.exception("Clipboard watcher tick failed")
            await asyncio.sleep(self.interval)

    def start(self) -> asyncio.Task:
        if self.running:
            return self._task
        self._running = True
        self._task = asyncio.create_task(self.run())
        return self._task

    async def stop(self) -> None:
        self._running = False
        if self._task is not None:
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
            self._task = None
        logger.info("Clipboard watcher stopped")
