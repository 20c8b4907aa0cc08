"""OS clipboard access: text via pyperclip, images via Pillow."""

import io
import logging
import platform
import subprocess
from typing import NamedTuple, Optional, Union

import pyperclip
from PIL import Image, ImageGrab

from .errors import ClipboardReadError

logger = logging.getLogger(__name__)


class ClipboardContent(NamedTuple):
    kind: str  # "text" | "image" | "empty"
    data: Union[str, bytes, None] = None


EMPTY_CLIPBOARD = ClipboardContent("empty")


class SystemClipboard:
    """Reads and writes the system clipboard."""

    def __init__(self, read_images: bool = True):
        self.read_images = read_images

    def read_current(self) -> ClipboardContent:
        try:
            text = pyperclip.paste()
        except pyperclip.PyperclipException as e:
            raise ClipboardReadError(f"Clipboard text unavailable: {e}") from e

        if text and text.strip():
            return ClipboardContent("text", text)

        if self.read_images:
            image = self._read_image()
            if image is not None:
                return ClipboardContent("image", image)

        return EMPTY_CLIPBOARD

    def _read_image(self) -> Optional[bytes]:
        """PNG bytes of a clipboard image, if the platform exposes one."""
        try:
            data = ImageGrab.grabclipboard()
        except (NotImplementedError, OSError) as e:
            logger.debug(f"Clipboard image unavailable: {e}")
            return None

        if not isinstance(data, Image.Image):
            return None

        buffer = io.BytesIO()
        data.save(buffer, format="PNG")
        return buffer.getvalue()

    def write(self, text: str) -> None:
        pyperclip.copy(text)


def frontmost_app() -> Optional[str]:
    """Name of the frontmost application (macOS only, best-effort)."""
    if platform.system() != "Darwin":
        return None

    script = (
        'tell application "System Events" to get name of first application '
        "process whose frontmost is true"
    )
    try:
        output = subprocess.check_output(
            ["osascript", "-e", script], stderr=subprocess.DEVNULL, timeout=2
        )
    except (subprocess.SubprocessError, OSError):
        return None

    name = output.decode("utf-8", errors="ignore").strip()
    return name or None
