import base64
import io
import json
import pytest
from pathlib import Path
from datetime import datetime
from PIL import Image
from darkgallery import config
from darkgallery.exceptions import MetadataExtractionError, ThumbnailError
from darkgallery.metadata.extract import MetadataExtractor, parse_media_date
from darkgallery.metadata.thumbnails import ThumbnailGenerator, fit_size

HASH = "a94a8fe5ccb19ba61c4c0873d391e987982fbbd3"

# Mock MediaInfo class structure
class MockTrack:
    def __init__(self, track_type="General", **kwargs):
        self.track_type = track_type
        for k, v in kwargs.items():
            setattr(self, k, v)

class MockMediaInfo:
    def __init__(self, tracks):
        self.tracks = tracks

    @classmethod
    def parse(cls, path):
        return cls([
            MockTrack(duration=5000, recorded_date="2023-01-01 12:00:00"),
            MockTrack("Video", width=1920, height=1080),
        ])

class NoVideoMediaInfo(MockMediaInfo):
    @classmethod
    def parse(cls, path):
        return cls([MockTrack(duration=5000)])

def test_video_metadata_extraction(monkeypatch, tmp_path):
    # Mock the MediaInfo import inside the module
    import darkgallery.metadata.extract as extract_module
    monkeypatch.setattr(extract_module, "MediaInfo", MockMediaInfo)

    vid = tmp_path / "test.mp4"
    vid.touch()

    meta = MetadataExtractor().get_video_info(vid)

    assert (meta.width, meta.height) == (1920, 1080)
    assert meta.duration == 5_000_000  # microseconds
    assert meta.taken_at == datetime(2023, 1, 1, 12, 0, 0)

def test_video_falls_back_to_exiftool(monkeypatch, tmp_path):
    import darkgallery.metadata.extract as extract_module
    monkeypatch.setattr(extract_module, "MediaInfo", NoVideoMediaInfo)

    calls = []
    def fake_check_output(cmd, **kwargs):
        calls.append(cmd)
        return json.dumps([{
            "ImageWidth": 640,
            "ImageHeight": 360,
            "Duration": 2.5,
            "CreateDate": "2019:07:04 18:00:00",
        }])
    monkeypatch.setattr(extract_module.subprocess, "check_output", fake_check_output)

    vid = tmp_path / "clip.mov"
    vid.touch()
    meta = MetadataExtractor().get_video_info(vid)

    assert calls[0][0] == config.EXIFTOOL_BINARY
    assert (meta.width, meta.height) == (640, 360)
    assert meta.duration == 2_500_000
    assert meta.taken_at == datetime(2019, 7, 4, 18, 0, 0)

def test_video_without_dimensions_is_a_decode_error(monkeypatch, tmp_path):
    import darkgallery.metadata.extract as extract_module
    monkeypatch.setattr(extract_module, "MediaInfo", NoVideoMediaInfo)
    monkeypatch.setattr(extract_module.subprocess, "check_output", lambda cmd, **kw: "[{}]")

    vid = tmp_path / "audio-only.mp4"
    vid.touch()
    with pytest.raises(MetadataExtractionError):
        MetadataExtractor().get_video_info(vid)

def test_image_dimensions_without_exif(tmp_path, make_image):
    img = make_image(tmp_path / "plain.png", size=(120, 80))
    meta = MetadataExtractor().get_image_info(img)

    assert (meta.width, meta.height) == (120, 80)
    assert meta.duration is None
    assert meta.taken_at is None

def test_image_capture_time_from_exif(tmp_path):
    path = tmp_path / "camera.jpg"
    exif = Image.Exif()
    exif[0x0132] = "2020:05:17 08:30:00"  # DateTime
    Image.new("RGB", (40, 30), (10, 20, 30)).save(path, exif=exif)

    meta = MetadataExtractor().get_image_info(path)
    assert meta.taken_at == datetime(2020, 5, 17, 8, 30, 0)

def test_undecodable_image_raises(tmp_path):
    bad = tmp_path / "broken.jpg"
    bad.write_bytes(b"definitely not a jpeg")
    with pytest.raises(MetadataExtractionError):
        MetadataExtractor().get_image_info(bad)

def test_missing_image_raises_not_found(tmp_path):
    with pytest.raises(FileNotFoundError):
        MetadataExtractor().get_image_info(tmp_path / "gone.jpg")

def test_media_date_parsing():
    assert parse_media_date("UTC 2021-03-04 05:06:07") == datetime(2021, 3, 4, 5, 6, 7)
    assert parse_media_date("2021:03:04 05:06:07.250") == datetime(2021, 3, 4, 5, 6, 7)
    assert parse_media_date("2021-03-04T05:06:07+09:00") == datetime(2021, 3, 4, 5, 6, 7)
    assert parse_media_date("yesterday") is None

# --- Thumbnails ---

def test_fit_size():
    assert fit_size(1000, 500, 256) == (256, 128)
    # Never upscales
    assert fit_size(100, 50, 256) == (100, 50)
    # Extreme panoramas keep a visible short side
    assert fit_size(10000, 10, 256) == (256, 3)

def test_image_thumbnail(tmp_path, make_image):
    src = make_image(tmp_path / "wide.png", size=(1024, 512))
    index_dir = tmp_path / ".darkgallery"
    gen = ThumbnailGenerator(index_dir)

    result = gen.generate_for_image(src, HASH)

    assert result.thumbnail_path == f"thumbs/a/{HASH}.webp"
    assert result.preview_video_path is None
    assert gen.has_thumbnail(HASH)
    with Image.open(index_dir / result.thumbnail_path) as thumb:
        assert thumb.format == "WEBP"
        assert thumb.size == (256, 128)

    inline = base64.b64decode(result.thumbnail_base64)
    with Image.open(io.BytesIO(inline)) as tiny:
        assert tiny.format == "WEBP"
        assert max(tiny.size) == config.INLINE_THUMBNAIL_MAX_SIDE

def test_image_thumbnail_is_overwritten_for_same_hash(tmp_path, make_image):
    gen = ThumbnailGenerator(tmp_path / ".darkgallery")
    first = gen.generate_for_image(make_image(tmp_path / "a.png"), HASH)
    second = gen.generate_for_image(make_image(tmp_path / "b.png"), HASH)
    assert first.thumbnail_path == second.thumbnail_path

def test_undecodable_image_thumbnail_raises(tmp_path):
    bad = tmp_path / "broken.png"
    bad.write_bytes(b"nope")
    with pytest.raises(ThumbnailError):
        ThumbnailGenerator(tmp_path / ".darkgallery").generate_for_image(bad, HASH)

def test_video_thumbnail_and_preview(monkeypatch, tmp_path):
    frame = io.BytesIO()
    Image.new("RGB", (640, 360), (0, 128, 255)).save(frame, "PNG")

    calls = []
    def fake_run_ffmpeg(self, args, src):
        calls.append(args)
        if args[-1] == "pipe:1":
            return frame.getvalue()
        Path(args[-1]).write_bytes(b"webm")
        return b""
    monkeypatch.setattr(ThumbnailGenerator, "_run_ffmpeg", fake_run_ffmpeg)

    src = tmp_path / "clip.mp4"
    src.touch()
    index_dir = tmp_path / ".darkgallery"
    result = ThumbnailGenerator(index_dir).generate_for_video(src, HASH, 12_000_000)

    # Poster frame at 10% of 12 s
    assert calls[0][:2] == ["-ss", "1.200"]
    assert "-t" in calls[1]
    assert result.thumbnail_path == f"thumbs/a/{HASH}.webp"
    assert result.preview_video_path == f"thumbs/a/{HASH}.webm"
    assert (index_dir / result.preview_video_path).exists()
    with Image.open(index_dir / result.thumbnail_path) as thumb:
        assert thumb.size == (256, 144)

def test_missing_ffmpeg_is_a_thumbnail_error(monkeypatch, tmp_path):
    monkeypatch.setattr(config, "FFMPEG_BINARY", "ffmpeg-that-does-not-exist-anywhere")
    src = tmp_path / "clip.mp4"
    src.touch()
    with pytest.raises(ThumbnailError):
        ThumbnailGenerator(tmp_path / ".darkgallery").generate_for_video(src, HASH, 1_000_000)

def test_remove_for_hash(tmp_path, make_image):
    gen = ThumbnailGenerator(tmp_path / ".darkgallery")
    gen.generate_for_image(make_image(tmp_path / "a.png"), HASH)
    gen.paths_for_hash(HASH).video.write_bytes(b"webm")

    gen.remove_for_hash(HASH)
    assert not gen.has_thumbnail(HASH)
    assert not gen.paths_for_hash(HASH).video.exists()
    # Removing twice is fine
    gen.remove_for_hash(HASH)
