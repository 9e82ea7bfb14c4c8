import copy
import logging
import os
import shutil
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional, Union

from . import config
from .database.db import DBManager
from .database.ops import ConfigStore, ItemStore
from .exceptions import GalleryError, GalleryOpenError
from .indexing.reconcile import ExistingItemsPass, NewFilesPass, Reconciler
from .indexing.sequence import IndexingSequence


def index_directory_path(gallery_path: Union[str, Path]) -> Path:
    return Path(gallery_path) / config.INDEX_DIRNAME


def sqlite_file_path(gallery_path: Union[str, Path]) -> Path:
    return index_directory_path(gallery_path) / config.SQLITE_FILENAME


@dataclass
class GalleryPathInfo:
    exists: bool
    is_absolute: bool
    is_directory: Optional[bool] = None
    is_gallery: Optional[bool] = None
    is_descendant_of_gallery: Optional[bool] = None
    directory_has_read_permission: Optional[bool] = None
    directory_has_write_permission: Optional[bool] = None
    sqlite_file_has_read_permission: Optional[bool] = None
    sqlite_file_has_write_permission: Optional[bool] = None


class Gallery:
    """
    A gallery directory and its catalogue.

    with Gallery(path) as gallery:
        for step in gallery.index_existing_items():
            ...
        for step in gallery.index_new_files():
            ...

    Only one indexing sequence should run against a gallery at a time.
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path).resolve()
        self.index_dir = index_directory_path(self.path)
        self._db: Optional[DBManager] = None
        self._items: Optional[ItemStore] = None
        self._configs: Optional[ConfigStore] = None

    @property
    def is_opened(self) -> bool:
        return self._db is not None

    @property
    def items(self) -> ItemStore:
        if self._items is None:
            raise GalleryError("The gallery must be opened before accessing its items.")
        return self._items

    @property
    def configs(self) -> ConfigStore:
        if self._configs is None:
            raise GalleryError("The gallery must be opened before accessing its configs.")
        return self._configs

    def open(self):
        """Connects to the catalogue, creating the index directory on first use."""
        if self.is_opened:
            return

        info = Gallery.get_path_info(self.path)
        if not info.exists or not info.is_directory or not info.directory_has_write_permission:
            raise GalleryOpenError(f"Cannot open gallery at {self.path}: {info}")

        db_path = sqlite_file_path(self.path)
        is_new = not db_path.exists()
        if is_new:
            logging.info(f"Creating new gallery index in {self.index_dir}")
            self.index_dir.mkdir(parents=True, exist_ok=True)

        self._db = DBManager(db_path)
        conn = self._db.connect()
        self._items = ItemStore(conn)
        self._configs = ConfigStore(conn)

        if is_new:
            self.set_config('title', self.path.name)
            self.set_config('created_at', datetime.now())

    def close(self):
        if self._db:
            self._db.close()
        self._db = None
        self._items = None
        self._configs = None

    def __enter__(self) -> "Gallery":
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    # --- Settings ---

    def get_all_configs(self) -> Dict[str, Any]:
        configs = copy.deepcopy(config.DEFAULT_CONFIGS)
        configs.update(self.configs.all())
        return configs

    def get_config(self, key: str) -> Any:
        return self.configs.get(key, copy.deepcopy(config.DEFAULT_CONFIGS.get(key)))

    def set_config(self, key: str, value: Any):
        self.configs.set(key, value)

    # --- Indexing ---

    def reconciler(self) -> Reconciler:
        return Reconciler(
            self.path,
            self.items,
            image_extensions=self.get_config('image_extensions'),
            video_extensions=self.get_config('video_extensions'),
        )

    def index_existing_items(self, compare_hash: bool = False, fetch_count: int = config.FETCH_COUNT) -> IndexingSequence:
        return IndexingSequence(ExistingItemsPass(self.reconciler(), compare_hash, fetch_count))

    def index_new_files(self, batch_size: int = config.BULK_COUNT) -> IndexingSequence:
        return IndexingSequence(NewFilesPass(self.reconciler(), batch_size))

    # --- Gallery Directory Helpers ---

    @staticmethod
    def reset(gallery_path: Union[str, Path]) -> bool:
        """Deletes the index directory (catalogue and thumbnails)."""
        try:
            shutil.rmtree(index_directory_path(gallery_path))
            return True
        except OSError as e:
            logging.warning(f"Failed to reset gallery {gallery_path}: {e}")
            return False

    @staticmethod
    def get_path_info(gallery_path: Union[str, Path]) -> GalleryPathInfo:
        """Inspects a path from the point of view of opening it as a gallery."""
        path = Path(gallery_path)
        info = GalleryPathInfo(exists=path.exists(), is_absolute=path.is_absolute())
        if not info.exists:
            return info

        info.is_directory = path.is_dir()
        if not info.is_directory:
            return info

        info.directory_has_read_permission = os.access(path, os.R_OK)
        info.directory_has_write_permission = os.access(path, os.W_OK)

        # Nested galleries would index the same files twice
        info.is_descendant_of_gallery = False
        if info.is_absolute:
            for parent in path.parents:
                if sqlite_file_path(parent).exists():
                    info.is_descendant_of_gallery = True
                    break

        db_path = sqlite_file_path(path)
        info.is_gallery = db_path.exists()
        if info.is_gallery:
            info.sqlite_file_has_read_permission = os.access(db_path, os.R_OK)
            info.sqlite_file_has_write_permission = os.access(db_path, os.W_OK)

        return info
