"""
Custom exception hierarchy for the gallery indexer.

A file that disappears while it is being processed is reported with the
built-in FileNotFoundError; the reconciler treats that as "lost", not as a
failure. Everything below is a real failure of some kind.
"""


class GalleryError(Exception):
    """Base exception for all gallery indexer errors."""
    pass


class GalleryOpenError(GalleryError):
    """Raised when a gallery directory cannot be opened or created."""
    pass


class MetadataExtractionError(GalleryError):
    """Raised when a media file cannot be decoded for dimensions or duration."""
    pass


class ThumbnailError(GalleryError):
    """Raised when a thumbnail or preview clip cannot be produced."""
    pass


class DatabaseError(GalleryError):
    """Raised when catalogue store operations fail. Fatal to an indexing pass."""
    pass


class DirectoryWalkError(GalleryError):
    """Raised when a directory of the gallery cannot be listed. Fatal to an indexing pass."""
    pass
