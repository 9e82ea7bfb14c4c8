"""
Reconciliation of the catalogue against the gallery directory.

Two passes, each an explicit state object that is advanced one item at a
time by `step()`:

  ExistingItemsPass  re-checks every catalogued item (unchanged / updated /
                     lost / found elsewhere)
  NewFilesPass       indexes files no live item owns, re-attaching
                     byte-identical files to lost items instead of adding
                     duplicates

Run ExistingItemsPass first so `lost` is current when NewFilesPass looks
for lost items to re-attach.
"""
import logging
from collections import defaultdict, deque
from datetime import datetime
from pathlib import Path
from typing import Any, Deque, Dict, Iterable, List, Optional, Set, Tuple

from .. import config
from ..database.ops import ItemStore
from ..exceptions import DatabaseError, DirectoryWalkError
from ..metadata.extract import MetadataExtractor
from ..metadata.thumbnails import ThumbnailGenerator
from ..models import (
    FileInfo, IndexingResult, Item, ItemType, ProcessedInfo, TimeMode, split_relative_path,
)
from ..scanning.filesystem import PathFilteringOptions, PathWalker, file_extension, normalize_extensions
from ..scanning.hasher import FileHasher


def describe_error(error: Exception) -> str:
    message = str(error)
    return f"{type(error).__name__}: {message}" if message else type(error).__name__


class Reconciler:
    """
    Shared collaborators and per-file operations used by both passes.
    """

    def __init__(self,
                 root: Path,
                 store: ItemStore,
                 image_extensions: Iterable[str] = config.DEFAULT_IMAGE_EXTENSIONS,
                 video_extensions: Iterable[str] = config.DEFAULT_VIDEO_EXTENSIONS,
                 hasher: Optional[FileHasher] = None,
                 extractor: Optional[MetadataExtractor] = None,
                 thumbnailer: Optional[ThumbnailGenerator] = None):
        self.root = Path(root)
        self.store = store
        self.hasher = hasher or FileHasher()
        self.extractor = extractor or MetadataExtractor()
        self.thumbnailer = thumbnailer or ThumbnailGenerator(self.root / config.INDEX_DIRNAME)
        self.image_extensions = normalize_extensions(image_extensions)
        # An extension listed as both is treated as an image
        self.video_extensions = normalize_extensions(video_extensions) - self.image_extensions

    def absolute(self, relative_path: str) -> Path:
        return self.root / relative_path

    def media_type_for(self, relative_path: str) -> Optional[ItemType]:
        ext = file_extension(relative_path)
        if ext in self.image_extensions:
            return ItemType.IMAGE
        if ext in self.video_extensions:
            return ItemType.VIDEO
        return None

    def walk_media(self) -> List[str]:
        """All accepted media paths, skipping the index directory at any depth."""
        options = PathFilteringOptions(
            ignore_directories=[config.INDEX_DIRNAME],
            accepting_extensions=self.image_extensions | self.video_extensions,
        )
        try:
            return list(PathWalker(options).iter_relative_paths(self.root))
        except OSError as e:
            raise DirectoryWalkError(f"Cannot walk gallery {self.root}: {e}") from e

    def describe_file(self, relative_path: str, item_type: ItemType, file_hash: str, info: FileInfo) -> Dict[str, Any]:
        """
        Extracts metadata and renders thumbnails for one file.
        Returns the Item fields derived from the file's content.
        """
        path = self.absolute(relative_path)

        if item_type == ItemType.IMAGE:
            meta = self.extractor.get_image_info(path)
            thumbs = self.thumbnailer.generate_for_image(path, file_hash)
        else:
            meta = self.extractor.get_video_info(path)
            thumbs = self.thumbnailer.generate_for_video(path, file_hash, meta.duration)

        if meta.taken_at:
            time, time_mode = meta.taken_at, TimeMode.METADATA
        else:
            time, time_mode = datetime.fromtimestamp(info.mtime), TimeMode.MTIME

        return {
            'hash': file_hash,
            'size': info.size,
            'mtime': info.mtime,
            'time': time,
            'time_mode': time_mode,
            'width': meta.width,
            'height': meta.height,
            'duration': meta.duration if item_type == ItemType.VIDEO else None,
            'thumbnail_base64': thumbs.thumbnail_base64,
            'thumbnail_path': thumbs.thumbnail_path,
            'preview_video_path': thumbs.preview_video_path,
        }

    def build_item(self, relative_path: str, item_type: ItemType, file_hash: str, info: FileInfo) -> Item:
        directory, filename = split_relative_path(relative_path)
        return Item(
            type=item_type,
            directory=directory,
            filename=filename,
            **self.describe_file(relative_path, item_type, file_hash, info),
        )

    def refresh(self, item: Item, file_hash: str, info: FileInfo):
        """
        Re-derives everything from a file whose content (or stat) changed.
        Nothing is touched when extraction fails: the record keeps its
        old thumbnails.
        """
        values = self.describe_file(item.relative_path, item.type, file_hash, info)

        # Thumbnails are keyed by hash; keep them while another item still shares it.
        if file_hash != item.hash and self.store.count({'hash': item.hash}) <= 1:
            self.thumbnailer.remove_for_hash(item.hash)

        self.store.update(values, {'id': item.id})

    def relocate(self, item: Item, relative_path: str, info: FileInfo) -> bool:
        """
        Points an item at the path where its bytes were found and clears `lost`.
        Returns False when the row's `lost` flag changed since `item` was read.
        """
        directory, filename = split_relative_path(relative_path)
        values: Dict[str, Any] = {
            'directory': directory,
            'filename': filename,
            'lost': False,
            'size': info.size,
            'mtime': info.mtime,
        }
        if item.time_mode == TimeMode.MTIME:
            values['time'] = datetime.fromtimestamp(info.mtime)
        return self.store.update(values, {'id': item.id, 'lost': item.lost}) > 0


class ExistingItemsPass:
    """
    Re-checks every catalogued item, fetched `fetch_count` at a time by id.

    Hashing is skipped while size and mtime are unchanged unless
    `compare_hash` is set.
    """

    def __init__(self, reconciler: Reconciler, compare_hash: bool = False, fetch_count: int = config.FETCH_COUNT):
        self.reconciler = reconciler
        self.compare_hash = compare_hash
        self.fetch_count = max(1, fetch_count)

        self.total_count = 0
        self.processed_count = 0
        self._last_id = 0
        self._buffer: Deque[Item] = deque()
        self._exhausted = False

        # Unclaimed media paths grouped by (type, size); built on the first lost item
        self._unclaimed: Optional[Dict[Tuple[ItemType, int], List[str]]] = None
        self._unclaimed_keys: Dict[str, Tuple[ItemType, int]] = {}
        self._hash_cache: Dict[str, str] = {}

    def prepare(self):
        self.total_count = self.reconciler.store.count()
        logging.info(f"Reconciling {self.total_count} catalogued items (compare_hash={self.compare_hash})")

    def step(self) -> Optional[ProcessedInfo]:
        item = self._next_item()
        if item is None:
            return None
        self.processed_count += 1

        try:
            return self._reconcile(item)
        except (DatabaseError, DirectoryWalkError):
            raise
        except Exception as e:
            logging.warning(f"Failed to reconcile {item.relative_path}: {e}")
            return ProcessedInfo(IndexingResult.ERROR, item.relative_path, error=describe_error(e))

    def finish(self):
        logging.info(f"Reconciled {self.processed_count} of {self.total_count} items.")

    def _next_item(self) -> Optional[Item]:
        if not self._buffer and not self._exhausted:
            items = self.reconciler.store.find_all(after_id=self._last_id, limit=self.fetch_count)
            if items:
                self._last_id = items[-1].id
                self._buffer.extend(items)
            else:
                self._exhausted = True
        return self._buffer.popleft() if self._buffer else None

    def _reconcile(self, item: Item) -> ProcessedInfo:
        r = self.reconciler
        try:
            info = r.hasher.get_file_info(r.absolute(item.relative_path))
        except FileNotFoundError:
            return self._handle_missing(item)

        if item.lost:
            return self._handle_reappeared(item, info)
        return self._handle_present(item, info)

    def _handle_present(self, item: Item, info: FileInfo) -> ProcessedInfo:
        r = self.reconciler
        rel = item.relative_path

        unchanged = info.size == item.size and info.mtime == item.mtime
        file_hash = None
        if unchanged and self.compare_hash:
            file_hash = r.hasher.compute_hash(r.absolute(rel))
            unchanged = file_hash == item.hash
        if unchanged:
            return ProcessedInfo(IndexingResult.NO_BIG_CHANGE, rel)

        if file_hash is None:
            file_hash = r.hasher.compute_hash(r.absolute(rel))
        r.refresh(item, file_hash, info)
        logging.debug(f"Updated {rel}")
        return ProcessedInfo(IndexingResult.ITEM_UPDATED, rel)

    def _handle_reappeared(self, item: Item, info: FileInfo) -> ProcessedInfo:
        """A lost item's recorded path exists again."""
        r = self.reconciler
        rel = item.relative_path

        if r.store.count({'directory': item.directory, 'filename': item.filename, 'lost': False}):
            # Another live item owns this path now; look elsewhere.
            return self._handle_missing(item)

        file_hash = r.hasher.compute_hash(r.absolute(rel))
        if file_hash == item.hash and r.relocate(item, rel, info):
            self._claim(rel)
            return ProcessedInfo(IndexingResult.FOUND_AND_UPDATED, rel, [rel])

        # Something else was put in its place; only the user can tell.
        return ProcessedInfo(IndexingResult.FOUND_CANDIDATE, rel, [rel])

    def _handle_missing(self, item: Item) -> ProcessedInfo:
        r = self.reconciler
        rel = item.relative_path

        found_path, candidates = self._search_lost_file(item)
        if found_path:
            info = r.hasher.get_file_info(r.absolute(found_path))
            if r.relocate(item, found_path, info):
                logging.info(f"Found {rel} at {found_path}")
                return ProcessedInfo(IndexingResult.FOUND_AND_UPDATED, rel, [found_path])

        if not item.lost:
            r.store.update({'lost': True}, {'id': item.id})
            # Candidates ride along; they are reported as such once the item is lost.
            return ProcessedInfo(IndexingResult.ITEM_LOST, rel, candidates)

        if candidates:
            return ProcessedInfo(IndexingResult.FOUND_CANDIDATE, rel, candidates)
        return ProcessedInfo(IndexingResult.NO_BIG_CHANGE, rel)

    def _search_lost_file(self, item: Item) -> Tuple[Optional[str], List[str]]:
        """
        Two-tier match among unclaimed media paths of the same type:
          - same size and same hash: the item's file, returned as found
          - same size but left unhashed (over CANDIDATE_HASH_LIMIT): candidates
        Same size with a different hash is a different file and is dropped.
        """
        r = self.reconciler
        paths = self._unclaimed_index().get((item.type, item.size), [])

        hashed = 0
        unconfirmed: List[str] = []
        for path in list(paths):
            file_hash = self._hash_cache.get(path)
            if file_hash is None:
                if hashed >= config.CANDIDATE_HASH_LIMIT:
                    unconfirmed.append(path)
                    continue
                try:
                    file_hash = r.hasher.compute_hash(r.absolute(path))
                except FileNotFoundError:
                    self._claim(path)
                    continue
                self._hash_cache[path] = file_hash
                hashed += 1

            if file_hash == item.hash:
                self._claim(path)
                return path, []
        return None, unconfirmed

    def _unclaimed_index(self) -> Dict[Tuple[ItemType, int], List[str]]:
        if self._unclaimed is None:
            r = self.reconciler
            live = r.store.live_relative_paths()
            index: Dict[Tuple[ItemType, int], List[str]] = defaultdict(list)
            for rel in r.walk_media():
                if rel in live:
                    continue
                try:
                    info = r.hasher.get_file_info(r.absolute(rel))
                except FileNotFoundError:
                    continue
                key = (r.media_type_for(rel), info.size)
                index[key].append(rel)
                self._unclaimed_keys[rel] = key
            self._unclaimed = index
            logging.debug(f"Lost-file search over {len(self._unclaimed_keys)} unclaimed files")
        return self._unclaimed

    def _claim(self, relative_path: str):
        key = self._unclaimed_keys.pop(relative_path, None)
        if key is not None and self._unclaimed is not None:
            self._unclaimed[key].remove(relative_path)


class NewFilesPass:
    """
    Indexes files whose path is not owned by a live item.

    A path still recorded by a lost item is checked first: the same bytes
    bring that item back, different bytes are left to the user as a
    candidate. Any other file whose hash matches a lost item re-attaches
    that item; the rest become new records.

    New records are buffered and bulk-inserted every `batch_size` records;
    re-attached lost items are written one by one as they are matched.
    """

    def __init__(self, reconciler: Reconciler, batch_size: int = config.BULK_COUNT):
        self.reconciler = reconciler
        self.batch_size = max(1, batch_size)

        self.total_count = 0
        self.processed_count = 0
        self.bulk_insert_count = 0
        self._paths: Deque[str] = deque()
        self._lost_by_hash: Dict[str, List[Item]] = {}
        self._lost_by_path: Dict[str, List[Item]] = {}
        self._staged: List[Item] = []

    def prepare(self):
        r = self.reconciler
        live: Set[str] = r.store.live_relative_paths()
        self._paths = deque(p for p in r.walk_media() if p not in live)
        self.total_count = len(self._paths)

        for item in r.store.find_all({'lost': True}):
            self._lost_by_hash.setdefault(item.hash, []).append(item)
            self._lost_by_path.setdefault(item.relative_path, []).append(item)

        logging.info(f"Found {self.total_count} unowned files ({len(self._lost_by_hash)} lost hashes to match)")

    def step(self) -> Optional[ProcessedInfo]:
        if not self._paths:
            return None
        rel = self._paths.popleft()
        self.processed_count += 1

        try:
            return self._index_path(rel)
        except (DatabaseError, DirectoryWalkError):
            raise
        except FileNotFoundError:
            # The file disappeared while indexing it.
            return ProcessedInfo(IndexingResult.ERROR, rel, error="File does not exist")
        except Exception as e:
            logging.warning(f"Failed to index {rel}: {e}")
            return ProcessedInfo(IndexingResult.ERROR, rel, error=describe_error(e))

    def finish(self):
        if self._staged:
            self._flush()
        logging.info(f"Indexed {self.processed_count} of {self.total_count} new files.")

    def _index_path(self, rel: str) -> ProcessedInfo:
        r = self.reconciler
        item_type = r.media_type_for(rel)
        if item_type is None:
            # The walker only yields accepted extensions.
            raise ValueError(f"Unexpected file extension: {rel}")

        path = r.absolute(rel)
        info = r.hasher.get_file_info(path)
        file_hash = r.hasher.compute_hash(path)

        same_path = self._lost_by_path.get(rel, [])
        item = next((i for i in same_path if i.hash == file_hash), None)
        if item is None:
            lost_items = self._lost_by_hash.get(file_hash)
            item = lost_items[0] if lost_items else None

        if item is not None:
            self._forget_lost(item)
            if r.relocate(item, rel, info):
                logging.info(f"Found {item.relative_path} at {rel}")
                return ProcessedInfo(IndexingResult.FOUND_AND_UPDATED, rel, [item.relative_path])

        if same_path:
            # Different bytes where a lost item used to be; only the user can tell.
            return ProcessedInfo(IndexingResult.FOUND_CANDIDATE, rel, [rel])

        self._staged.append(r.build_item(rel, item_type, file_hash, info))
        if len(self._staged) >= self.batch_size:
            self._flush()
        return ProcessedInfo(IndexingResult.ITEM_ADDED, rel)

    def _forget_lost(self, item: Item):
        for index, key in ((self._lost_by_hash, item.hash), (self._lost_by_path, item.relative_path)):
            items = index.get(key, [])
            if item in items:
                items.remove(item)
            if not items:
                index.pop(key, None)

    def _flush(self):
        try:
            self.reconciler.store.bulk_create(self._staged)
            self.bulk_insert_count += 1
        finally:
            self._staged = []
