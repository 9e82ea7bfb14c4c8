import pytest
import sqlite3
from PIL import Image
from darkgallery.database.schema import init_schema
from darkgallery.database.ops import ConfigStore, ItemStore
from darkgallery.indexing.reconcile import Reconciler

@pytest.fixture
def conn():
    """Returns an in-memory SQLite connection with the schema initialized."""
    c = sqlite3.connect(":memory:")
    c.row_factory = sqlite3.Row
    init_schema(c)
    try:
        yield c
    finally:
        c.close()

@pytest.fixture
def store(conn):
    """Returns an ItemStore attached to the in-memory DB."""
    return ItemStore(conn)

@pytest.fixture
def config_store(conn):
    return ConfigStore(conn)

@pytest.fixture
def gallery_root(tmp_path):
    root = tmp_path / "gallery"
    root.mkdir()
    return root

@pytest.fixture
def reconciler(gallery_root, store):
    return Reconciler(gallery_root, store)

@pytest.fixture
def make_image():
    """
    Writes a solid-colour image. Different colours give different bytes;
    BMP files of equal dimensions always have equal sizes.
    """
    def _make(path, size=(64, 48), color=(200, 30, 30)):
        path.parent.mkdir(parents=True, exist_ok=True)
        Image.new("RGB", size, color).save(path)
        return path
    return _make
