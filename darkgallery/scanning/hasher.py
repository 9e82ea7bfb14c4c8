import hashlib
import os
from pathlib import Path
from typing import Union

from .. import config
from ..models import FileInfo


class FileHasher:
    """
    Content fingerprint and cheap stat signals, kept apart so callers can skip
    the expensive read when size and mtime already say nothing changed.

    Both raise FileNotFoundError when the file is gone; that is the signal
    the reconciler uses to mark an item lost.
    """

    def compute_hash(self, path: Union[str, Path]) -> str:
        """Reads entire file. High I/O cost. Returns 40 hex chars (SHA-1)."""
        h = hashlib.sha1()
        with open(path, 'rb') as f:
            while chunk := f.read(config.HASH_CHUNK_SIZE):
                h.update(chunk)
        return h.hexdigest()

    def get_file_info(self, path: Union[str, Path]) -> FileInfo:
        stat_result = os.stat(path)
        return FileInfo(size=stat_result.st_size, mtime=stat_result.st_mtime)
