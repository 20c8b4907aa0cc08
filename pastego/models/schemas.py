"""Data models for PasteGo."""

import time
import uuid
from enum import Enum
from typing import List, Optional
from pydantic import BaseModel, Field


class ClipType(str, Enum):
    TEXT = "text"
    CODE = "code"
    URL = "url"
    IMAGE = "image"


class ProviderKind(str, Enum):
    """Wire-protocol families understood by the generation pipeline."""

    OPENAI = "openai"
    CLAUDE = "claude"
    OLLAMA = "ollama"
    KIMI = "kimi"
    MINIMAX = "minimax"


def new_id() -> str:
    return uuid.uuid4().hex


class ClipRecord(BaseModel):
    """One stored clipboard observation.

    For image records ``content`` holds the blob path reference, never bytes.
    """

    id: str = Field(default_factory=new_id)
    content: str
    content_hash: str
    clip_type: ClipType = ClipType.TEXT
    source_app: Optional[str] = None
    is_pinned: bool = False
    created_at: float = Field(default_factory=time.time)


class Template(BaseModel):
    """Named reusable prompt with a materials placeholder."""

    id: str = Field(default_factory=new_id)
    name: str
    prompt: str
    category: str = "general"
    shortcut: Optional[str] = None


class AiProvider(BaseModel):
    """A configured remote text-generation backend."""

    id: str = Field(default_factory=new_id)
    name: str
    kind: ProviderKind
    endpoint: str
    model: str
    api_key: str = ""
    is_default: bool = False


class StoreChange(BaseModel):
    """Change notification emitted by the history store."""

    action: str  # inserted | refreshed | pinned | deleted | pruned
    record: Optional[ClipRecord] = None
    ids: List[str] = Field(default_factory=list)


class EventKind(str, Enum):
    FRAGMENT = "fragment"
    DONE = "done"
    ERROR = "error"
    CANCELLED = "cancelled"


class StreamEvent(BaseModel):
    """One entry of a generation event sequence: fragment* then a terminal event."""

    kind: EventKind
    text: str = ""
    error_kind: Optional[str] = None
    message: Optional[str] = None

    @classmethod
    def fragment(cls, text: str) -> "StreamEvent":
        return cls(kind=EventKind.FRAGMENT, text=text)

    @classmethod
    def done(cls) -> "StreamEvent":
        return cls(kind=EventKind.DONE)

    @classmethod
    def error(cls, error_kind: str, message: str) -> "StreamEvent":
        return cls(kind=EventKind.ERROR, error_kind=error_kind, message=message)

    @classmethod
    def cancelled(cls) -> "StreamEvent":
        return cls(kind=EventKind.CANCELLED)

    @property
    def is_terminal(self) -> bool:
        return self.kind is not EventKind.FRAGMENT


class GenerationResult(BaseModel):
    """Summary of a finished generation session."""

    state: str
    output: str
    error: Optional[str] = None
    error_kind: Optional[str] = None
