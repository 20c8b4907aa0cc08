"""Content classification and fingerprinting for clipboard payloads."""

import hashlib
import re
from typing import NamedTuple, Union

from pastego.models.schemas import ClipType

RawPayload = Union[str, bytes]

_URL_RE = re.compile(r"^(?:https?|ftp)://[^\s/?#]+[^\s]*$", re.IGNORECASE)

CODE_INDICATORS = [
    "fn ",
    "func ",
    "def ",
    "class ",
    "import ",
    "from ",
    "#include",
    "const ",
    "let ",
    "var ",
    "function ",
    "return ",
    "if (",
    "for (",
    "while (",
    "pub fn",
    "async ",
    "await ",
    "=>",
    "->",
    "::",
    "println!",
    "console.log",
    "System.out",
    "<?php",
    "package ",
    "struct ",
]


class Classification(NamedTuple):
    clip_type: ClipType
    content_hash: str


def normalize_text(text: str) -> str:
    """Normalize line endings and drop trailing whitespace per line and overall."""
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    return "\n".join(line.rstrip() for line in text.split("\n")).rstrip()


def content_hash(payload: RawPayload) -> str:
    if isinstance(payload, bytes):
        return hashlib.sha256(payload).hexdigest()
    return hashlib.sha256(normalize_text(payload).encode("utf-8")).hexdigest()


def is_url(text: str) -> bool:
    return bool(_URL_RE.match(text.strip()))


def looks_like_code(text: str) -> bool:
    """Best-effort code heuristic: syntax tokens weighed against line count and braces."""
    trimmed = text.strip()
    lines = trimmed.splitlines()
    line_count = len(lines)
    indicator_count = sum(1 for token in CODE_INDICATORS if token in trimmed)
    has_braces = "{" in trimmed and "}" in trimmed

    if indicator_count >= 2 and line_count >= 3:
        return True
    if has_braces and indicator_count >= 1 and line_count >= 5:
        return True

    # Indented blocks ending in ';' or ':' are a strong signal even without keywords
    if line_count >= 3:
        indented = sum(1 for line in lines if line.startswith(("    ", "\t")))
        terminated = sum(1 for line in lines if line.rstrip().endswith((";", "{", "}", ":")))
        if indented >= 2 and terminated * 2 >= line_count:
            return True

    return False


def classify(payload: RawPayload) -> Classification:
    """Classify a raw clipboard payload and fingerprint it for deduplication."""
    if isinstance(payload, bytes):
        return Classification(ClipType.IMAGE, content_hash(payload))

    digest = content_hash(payload)
    if is_url(payload):
        return Classification(ClipType.URL, digest)
    if looks_like_code(payload):
        return Classification(ClipType.CODE, digest)
    return Classification(ClipType.TEXT, digest)
