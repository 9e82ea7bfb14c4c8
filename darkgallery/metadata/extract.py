import json
import logging
import subprocess
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional

import exifread
from PIL import Image, UnidentifiedImageError
from pymediainfo import MediaInfo

from .. import config
from ..exceptions import MetadataExtractionError
from ..models import MediaMetadata

# Container tags tried in order; cameras disagree on which one they fill
MEDIAINFO_DATE_FIELDS = ["recorded_date", "encoded_date", "tagged_date"]
EXIFTOOL_DATE_FIELDS = ["DateTimeOriginal", "CreateDate", "CreationDate", "MediaCreateDate"]


def parse_media_date(value) -> Optional[datetime]:
    """
    Best-effort parse of the date strings found in media containers:
    ISO 8601, 'UTC 2020-01-01 12:00:00', '2020:01:01 12:00:00.123'.
    Timezones are dropped; returns None when nothing matches.
    """
    if not value:
        return None
    text = str(value).replace("UTC", "").strip()

    try:
        return datetime.fromisoformat(text).replace(tzinfo=None)
    except ValueError:
        pass

    # EXIF puts colons in the date part as well
    text = text.replace(":", "-", 2).split(".")[0]
    try:
        return datetime.strptime(text, "%Y-%m-%d %H:%M:%S")
    except ValueError:
        return None


@dataclass
class _VideoProbe:
    width: Optional[int] = None
    height: Optional[int] = None
    seconds: Optional[float] = None
    taken_at: Optional[datetime] = None

    @property
    def has_dimensions(self) -> bool:
        return bool(self.width and self.height)

    def to_metadata(self) -> MediaMetadata:
        return MediaMetadata(
            width=int(self.width),
            height=int(self.height),
            duration=int(round(self.seconds * 1_000_000)) if self.seconds is not None else 0,
            taken_at=self.taken_at,
        )


class MetadataExtractor:
    """
    Reads what the index needs from a media file.

    Images: Pillow for the dimensions, exifread for the capture time.
    Videos: pymediainfo first, then the 'exiftool' CLI when MediaInfo cannot
    find a video stream.

    Dimensions are mandatory; the capture time is best-effort.
    """

    def get_image_info(self, path: Path) -> MediaMetadata:
        try:
            with Image.open(path) as img:
                width, height = img.size
        except FileNotFoundError:
            raise
        except (UnidentifiedImageError, OSError) as e:
            raise MetadataExtractionError(f"Cannot decode image {path}: {e}") from e

        return MediaMetadata(width=width, height=height, taken_at=self._exif_capture_time(path))

    def get_video_info(self, path: Path) -> MediaMetadata:
        try:
            probe = self._probe_mediainfo(path)
            if probe.has_dimensions:
                return probe.to_metadata()
        except FileNotFoundError:
            raise
        except Exception as e:
            logging.debug(f"MediaInfo could not read {path}: {e}")

        try:
            probe = self._probe_exiftool(path)
        except (OSError, subprocess.SubprocessError, ValueError) as e:
            raise MetadataExtractionError(f"Cannot read video metadata of {path}: {e}") from e

        if not probe.has_dimensions:
            raise MetadataExtractionError(f"No video stream found in {path}")
        return probe.to_metadata()

    def _exif_capture_time(self, path: Path) -> Optional[datetime]:
        try:
            with open(path, 'rb') as f:
                tags = exifread.process_file(f, details=False)
        except Exception as e:
            logging.debug(f"ExifRead failed for {path}: {e}")
            return None

        for tag in config.DATE_TAGS:
            if tag not in tags:
                continue
            try:
                return datetime.strptime(str(tags[tag]), "%Y:%m:%d %H:%M:%S")
            except ValueError:
                continue
        return None

    def _probe_mediainfo(self, path: Path) -> _VideoProbe:
        probe = _VideoProbe()
        for track in MediaInfo.parse(str(path)).tracks:
            duration_ms = getattr(track, "duration", None)

            if track.track_type == "General":
                if duration_ms:
                    probe.seconds = float(duration_ms) / 1000.0
                for field in MEDIAINFO_DATE_FIELDS:
                    probe.taken_at = parse_media_date(getattr(track, field, None))
                    if probe.taken_at:
                        break

            elif track.track_type == "Video" and probe.width is None:
                probe.width = getattr(track, "width", None)
                probe.height = getattr(track, "height", None)
                if probe.seconds is None and duration_ms:
                    probe.seconds = float(duration_ms) / 1000.0
        return probe

    def _probe_exiftool(self, path: Path) -> _VideoProbe:
        # -n keeps numbers raw: Duration in seconds, dimensions as ints
        cmd = [config.EXIFTOOL_BINARY, "-j", "-n", str(path)]
        output = subprocess.check_output(cmd, stderr=subprocess.DEVNULL, text=True)

        results = json.loads(output)
        if not results:
            return _VideoProbe()
        tags = results[0]

        probe = _VideoProbe(
            width=tags.get("ImageWidth") or tags.get("SourceImageWidth"),
            height=tags.get("ImageHeight") or tags.get("SourceImageHeight"),
        )
        if tags.get("Duration") is not None:
            try:
                probe.seconds = float(tags["Duration"])
            except (TypeError, ValueError):
                logging.debug(f"Unreadable duration {tags['Duration']!r} in {path}")
        for field in EXIFTOOL_DATE_FIELDS:
            probe.taken_at = parse_media_date(tags.get(field))
            if probe.taken_at:
                break
        return probe
