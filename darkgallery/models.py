from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import PurePosixPath
from typing import List, Optional


class ItemType(str, Enum):
    IMAGE = 'IMG'
    VIDEO = 'VID'


class TimeMode(str, Enum):
    METADATA = 'METAD'  # Taken from tags embedded in the file
    MTIME = 'MTIME'     # Fallback to the filesystem modification time


class IndexingResult(str, Enum):
    NO_BIG_CHANGE = 'no-big-change'
    ITEM_LOST = 'item-lost'
    ITEM_UPDATED = 'item-updated'
    ITEM_ADDED = 'item-added'
    FOUND_AND_UPDATED = 'found-lost-items-file-and-updated'
    FOUND_CANDIDATE = 'found-lost-items-candidate-file'
    ERROR = 'error'


@dataclass
class FileInfo:
    size: int
    mtime: float


@dataclass
class MediaMetadata:
    """
    What the codecs told us about a media file.
    """
    width: int
    height: int
    duration: Optional[int] = None      # Microseconds, videos only
    taken_at: Optional[datetime] = None  # Embedded capture time, if parseable


@dataclass
class ThumbnailResult:
    thumbnail_base64: str
    thumbnail_path: str                      # Relative to the index directory
    preview_video_path: Optional[str] = None


@dataclass
class Item:
    """
    One catalogue record per indexed file.
    Location is relative to the gallery root, always with '/' separators.
    """
    type: ItemType
    hash: str
    directory: str
    filename: str
    size: int
    mtime: float
    time: datetime
    time_mode: TimeMode
    width: int
    height: int
    duration: Optional[int] = None
    lost: bool = False
    id: Optional[int] = None

    # Derived assets
    thumbnail_base64: Optional[str] = None
    thumbnail_path: Optional[str] = None
    preview_video_path: Optional[str] = None

    # User data (never written by the indexer)
    title: Optional[str] = None
    rating: int = 0
    memo: Optional[str] = None

    @property
    def relative_path(self) -> str:
        return str(PurePosixPath(self.directory) / self.filename)


def split_relative_path(relative_path: str):
    """Returns (directory, filename) for a '/'-separated relative path."""
    p = PurePosixPath(relative_path)
    return str(p.parent), p.name


@dataclass
class ProcessedInfo:
    result: IndexingResult
    path: str
    # Where a lost item was found, or the unconfirmed candidate paths
    related_paths: List[str] = field(default_factory=list)
    error: Optional[str] = None


@dataclass
class IndexingStep:
    total_count: int
    processed_count: int
    processed_info: Optional[ProcessedInfo] = None
