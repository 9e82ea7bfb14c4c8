"""
Thumbnail and preview clip generation.

Assets are sharded by the first hex char of the content hash:
    <index_dir>/thumbs/<hash[0]>/<hash>.webp
    <index_dir>/thumbs/<hash[0]>/<hash>.webm   (videos only)
Re-running for the same hash overwrites the same files.
"""
import base64
import io
import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple

from PIL import Image, ImageOps

from .. import config
from ..exceptions import ThumbnailError
from ..models import ThumbnailResult


@dataclass
class ThumbnailPaths:
    directory: Path
    image: Path
    video: Path


def fit_size(width: int, height: int, max_side: int, min_side: int = config.THUMBNAIL_MIN_SIDE) -> Tuple[int, int]:
    """
    Scales (width, height) so the longest side is at most `max_side`,
    keeping the aspect ratio. Never upscales, and never goes below `min_side`
    on the short side so extreme panoramas stay visible.
    """
    if width <= 0 or height <= 0:
        return max_side, max_side
    scale = min(1.0, max_side / max(width, height))
    w = max(min_side, round(width * scale))
    h = max(min_side, round(height * scale))
    return w, h


class ThumbnailGenerator:
    def __init__(self, index_dir: Path):
        self.index_dir = Path(index_dir)

    def paths_for_hash(self, file_hash: str) -> ThumbnailPaths:
        directory = self.index_dir / config.THUMBNAIL_DIRNAME / file_hash[0]
        return ThumbnailPaths(
            directory=directory,
            image=directory / f"{file_hash}.{config.THUMBNAIL_IMAGE_EXT}",
            video=directory / f"{file_hash}.{config.PREVIEW_VIDEO_EXT}",
        )

    def has_thumbnail(self, file_hash: str) -> bool:
        return self.paths_for_hash(file_hash).image.exists()

    def generate_for_image(self, src: Path, file_hash: str) -> ThumbnailResult:
        paths = self.paths_for_hash(file_hash)
        paths.directory.mkdir(parents=True, exist_ok=True)

        try:
            with Image.open(src) as img:
                img = ImageOps.exif_transpose(img)
                self._save_thumbnail(img, paths.image)
        except FileNotFoundError:
            raise
        except Exception as e:
            raise ThumbnailError(f"Cannot create thumbnail for {src}: {e}") from e

        return ThumbnailResult(
            thumbnail_base64=self._inline_thumbnail(paths.image),
            thumbnail_path=self._relative(paths.image),
        )

    def generate_for_video(self, src: Path, file_hash: str, duration: Optional[int]) -> ThumbnailResult:
        """
        Grabs a poster frame at ~10% of the duration and renders a short
        preview clip next to it. Both need the 'ffmpeg' binary on PATH.
        """
        paths = self.paths_for_hash(file_hash)
        paths.directory.mkdir(parents=True, exist_ok=True)

        # duration is in microseconds
        seek_time = (duration / 1_000_000) * 0.1 if duration else 0.0

        frame_png = self._run_ffmpeg([
            "-ss", f"{seek_time:.3f}",
            "-i", str(src),
            "-frames:v", "1",
            "-f", "image2pipe", "-vcodec", "png", "pipe:1",
        ], src)
        try:
            with Image.open(io.BytesIO(frame_png)) as img:
                self._save_thumbnail(img, paths.image)
        except Exception as e:
            raise ThumbnailError(f"Cannot decode poster frame of {src}: {e}") from e

        side = config.THUMBNAIL_MAX_SIDE
        self._run_ffmpeg([
            "-ss", f"{seek_time:.3f}",
            "-i", str(src),
            "-t", str(config.PREVIEW_VIDEO_SECONDS),
            "-an",
            "-vf", f"scale={side}:{side}:force_original_aspect_ratio=decrease,scale=trunc(iw/2)*2:trunc(ih/2)*2",
            "-c:v", "libvpx-vp9", "-b:v", "0", "-crf", "40",
            str(paths.video),
        ], src)

        return ThumbnailResult(
            thumbnail_base64=self._inline_thumbnail(paths.image),
            thumbnail_path=self._relative(paths.image),
            preview_video_path=self._relative(paths.video),
        )

    def remove_for_hash(self, file_hash: str):
        paths = self.paths_for_hash(file_hash)
        for p in (paths.image, paths.video):
            p.unlink(missing_ok=True)

    # --- Internal Helpers ---

    def _save_thumbnail(self, img: Image.Image, dest: Path):
        if img.mode not in ("RGB", "RGBA"):
            img = img.convert("RGBA" if "A" in img.getbands() else "RGB")
        size = fit_size(img.width, img.height, config.THUMBNAIL_MAX_SIDE)
        resized = img.resize(size, Image.Resampling.LANCZOS)
        resized.save(dest, "WEBP", quality=config.THUMBNAIL_QUALITY)

    def _inline_thumbnail(self, thumbnail: Path) -> str:
        """Tiny preview stored directly on the record for instant display."""
        with Image.open(thumbnail) as img:
            size = fit_size(img.width, img.height, config.INLINE_THUMBNAIL_MAX_SIDE)
            small = img.resize(size, Image.Resampling.LANCZOS)
            buf = io.BytesIO()
            small.save(buf, "WEBP", quality=config.INLINE_THUMBNAIL_QUALITY)
        return base64.b64encode(buf.getvalue()).decode('ascii')

    def _run_ffmpeg(self, args, src: Path) -> bytes:
        cmd = [config.FFMPEG_BINARY, "-hide_banner", "-loglevel", "error", "-y", *args]
        try:
            completed = subprocess.run(
                cmd, capture_output=True, check=True, timeout=config.FFMPEG_TIMEOUT_SEC,
            )
        except FileNotFoundError as e:
            if not src.exists():
                raise
            raise ThumbnailError(f"ffmpeg is not available: {e}") from e
        except (subprocess.SubprocessError, OSError) as e:
            logging.debug(f"ffmpeg failed for {src}: {e}")
            raise ThumbnailError(f"ffmpeg failed for {src}: {e}") from e
        return completed.stdout

    def _relative(self, path: Path) -> str:
        return path.relative_to(self.index_dir).as_posix()
