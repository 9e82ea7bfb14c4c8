"""
Configuration constants for the gallery indexer.
"""

# --- Gallery Layout ---
# Everything the indexer writes lives under this directory inside the gallery root.
INDEX_DIRNAME = ".darkgallery"
SQLITE_FILENAME = "db.sqlite"
THUMBNAIL_DIRNAME = "thumbs"
LOG_FILENAME = "indexer.log"

# --- File Type Definitions ---
# Extensions are stored without the leading dot and compared lower-cased.
DEFAULT_IMAGE_EXTENSIONS = ['jpg', 'jpeg', 'gif', 'png', 'bmp', 'webp']
DEFAULT_VIDEO_EXTENSIONS = ['webm', 'mp4', 'mov', 'avi']

# Per-gallery settings written to the `configs` table on first open.
DEFAULT_CONFIGS = {
    'title': '',
    'description': '',
    'created_at': None,
    'image_extensions': DEFAULT_IMAGE_EXTENSIONS,
    'video_extensions': DEFAULT_VIDEO_EXTENSIONS,
}

# --- Metadata Parsing ---
DATE_TAGS = [
    'EXIF DateTimeOriginal',
    'EXIF DateTimeDigitized',
    'Image DateTime',
]
EXIFTOOL_BINARY = "exiftool"

# --- Hashing ---
HASH_CHUNK_SIZE = 64 * 1024  # 64 KB chunks for reading

# --- Thumbnails ---
THUMBNAIL_MAX_SIDE = 256
THUMBNAIL_QUALITY = 60
INLINE_THUMBNAIL_MAX_SIDE = 20
INLINE_THUMBNAIL_QUALITY = 50
THUMBNAIL_MIN_SIDE = 3
THUMBNAIL_IMAGE_EXT = "webp"
PREVIEW_VIDEO_EXT = "webm"
PREVIEW_VIDEO_SECONDS = 3
FFMPEG_BINARY = "ffmpeg"
FFMPEG_TIMEOUT_SEC = 120

# --- Reconciliation ---
FETCH_COUNT = 1000  # Items per SELECT while reconciling existing items
BULK_COUNT = 100    # Records per bulk INSERT while indexing new files
# Same-size files hashed per lost item before the rest are reported as candidates
CANDIDATE_HASH_LIMIT = 16

# --- Reporting ---
SUMMARY_MAX_PATHS = 50

# --- Background Tasks ---
TASK_LOOP_INTERVAL_MS = 50
