"""On-disk storage for clipboard image blobs."""

import hashlib
import os
from pathlib import Path


class FileBlobStore:
    """Writes image bytes under a directory, addressed by content hash."""

    def __init__(self, root: Path):
        self.root = Path(root)

    def store(self, data: bytes) -> str:
        os.makedirs(self.root, exist_ok=True)
        digest = hashlib.sha256(data).hexdigest()
        path = self.root / f"{digest[:16]}.png"
        if not path.exists():
            path.write_bytes(data)
        return str(path)

    def load(self, path_ref: str) -> bytes:
        return Path(path_ref).read_bytes()
