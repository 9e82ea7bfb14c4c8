import os
import pytest
from darkgallery.scanning.filesystem import (
    PathFilteringOptions, PathWalker, collect_relative_paths, count_files, file_extension,
)
from darkgallery.scanning.hasher import FileHasher

TREE = [
    "foo-dir/foo-img.jpg",
    "foo-dir/foo-img.PNG",
    "foo-dir/foo-img.webp",
    "foo-dir/foo-vid.mp4",
    "foo-dir/foo-vid.webm",
    "foo-dir/foo-bin",
    "bar-dir/image.jpg",
    ".darkgallery/image.jpg",
    "abc-def",
    "jpg",
    "test.bin",
    "image.jpeg",
    "video.mov",
]

@pytest.fixture
def the_dir(tmp_path):
    root = tmp_path / "the-dir"
    for rel in TREE:
        p = root / rel
        p.parent.mkdir(parents=True, exist_ok=True)
        p.touch()
    # Sibling that must never show up
    (tmp_path / "not-this-dir").mkdir()
    (tmp_path / "not-this-dir" / "no.jpg").touch()
    return root

def test_walker_without_filters_finds_everything(the_dir):
    assert sorted(collect_relative_paths(the_dir)) == sorted(TREE)
    assert count_files(the_dir) == len(TREE)

def test_extension_filter_is_case_insensitive(the_dir):
    options = PathFilteringOptions(accepting_extensions=["JPG", "MoV", "png", "webp", "webm"])
    assert sorted(collect_relative_paths(the_dir, options)) == sorted([
        "foo-dir/foo-img.jpg",
        "foo-dir/foo-img.PNG",
        "foo-dir/foo-img.webp",
        "foo-dir/foo-vid.webm",
        "bar-dir/image.jpg",
        ".darkgallery/image.jpg",
        "video.mov",
    ])

def test_extension_filter_accepts_leading_dot(the_dir):
    options = PathFilteringOptions(accepting_extensions=[".jpeg"])
    assert collect_relative_paths(the_dir, options) == ["image.jpeg"]

def test_file_name_filter_matches_exact_names(the_dir):
    options = PathFilteringOptions(ignore_files=["img.webp", "foo-vid.webm"])
    paths = collect_relative_paths(the_dir, options)
    assert "foo-dir/foo-vid.webm" not in paths
    # Partial names do not match
    assert "foo-dir/foo-img.webp" in paths
    assert len(paths) == len(TREE) - 1

def test_directory_filter_applies_at_every_depth(the_dir):
    (the_dir / "bar-dir" / ".darkgallery").mkdir()
    (the_dir / "bar-dir" / ".darkgallery" / "deep.jpg").touch()

    options = PathFilteringOptions(ignore_directories=[".darkgallery", "foo-dir"])
    paths = collect_relative_paths(the_dir, options)

    assert not any(p.startswith("foo-dir/") for p in paths)
    assert not any(".darkgallery" in p for p in paths)
    assert "bar-dir/image.jpg" in paths

def test_walk_order_is_stable_and_uses_forward_slashes(the_dir):
    first = list(PathWalker().iter_relative_paths(the_dir))
    second = list(PathWalker().iter_relative_paths(the_dir))
    assert first == second
    assert all("\\" not in p for p in first)

@pytest.mark.skipif(not hasattr(os, "symlink"), reason="symlinks unavailable")
def test_walker_does_not_follow_symlinks(tmp_path, the_dir):
    outside = tmp_path / "outside"
    outside.mkdir()
    (outside / "linked.jpg").touch()
    os.symlink(outside, the_dir / "link-dir")

    paths = collect_relative_paths(the_dir)
    assert not any(p.startswith("link-dir") for p in paths)

def test_walk_of_missing_directory_raises(tmp_path):
    with pytest.raises(OSError):
        collect_relative_paths(tmp_path / "nope")

def test_file_extension():
    assert file_extension("IMG_01.JPG") == "jpg"
    assert file_extension("archive.tar.gz") == "gz"
    assert file_extension("jpg") == ""
    assert file_extension("dir/abc-def") == ""

def test_hash_regression_vector(tmp_path):
    f = tmp_path / "test.bin"
    f.write_bytes(bytes([1, 2, 3, 4, 5]))
    assert FileHasher().compute_hash(f) == "11966ab9c099f8fabefac54c08d5be2bd8c903af"

def test_hash_spans_multiple_chunks(tmp_path, monkeypatch):
    from darkgallery import config
    f = tmp_path / "test.bin"
    f.write_bytes(bytes([1, 2, 3, 4, 5]))
    # Chunk boundaries must not change the digest
    monkeypatch.setattr(config, "HASH_CHUNK_SIZE", 2)
    assert FileHasher().compute_hash(f) == "11966ab9c099f8fabefac54c08d5be2bd8c903af"

def test_file_info(tmp_path):
    f = tmp_path / "size-test.bin"
    f.write_bytes(bytes([1, 2, 3]))
    os.utime(f, (1609504496.789, 1609504496.789))

    info = FileHasher().get_file_info(f)
    assert info.size == 3
    assert info.mtime == pytest.approx(1609504496.789)

def test_missing_file_raises_not_found(tmp_path):
    hasher = FileHasher()
    with pytest.raises(FileNotFoundError):
        hasher.get_file_info(tmp_path / "gone.jpg")
    with pytest.raises(FileNotFoundError):
        hasher.compute_hash(tmp_path / "gone.jpg")
