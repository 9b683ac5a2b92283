import logging
import subprocess
import json
from pathlib import Path
from datetime import datetime
from typing import Optional

import exifread
from PIL import Image
from pymediainfo import MediaInfo

from .. import config
from ..exceptions import MetadataExtractionError
from ..models import MediaFile, MediaType, media_type_for


class MetadataExtractor:
    """
    Unified interface for extracting metadata from media files.

    Strategies:
      - Images: 'Pillow' for pixel dimensions, 'exifread' for the capture date.
      - Video/Audio: 'pymediainfo' (fast wrapper) -> falls back to 'exiftool' (robust).
      - Anything without an embedded date falls back to the file modification time.
    """

    def extract(self, path: Path) -> MediaFile:
        """
        Raises MetadataExtractionError when the type is not recognized or
        the file cannot be read at all.
        """
        media_type = media_type_for(path)
        if media_type is None:
            raise MetadataExtractionError(f"unsupported file type: {path}")

        try:
            st = path.stat()
        except OSError as e:
            raise MetadataExtractionError(f"cannot stat {path}: {e}") from e

        dimension = 0
        created: Optional[datetime] = None
        if media_type is MediaType.IMAGE:
            dimension = self.get_image_dimension(path)
            created = self.get_image_date(path)
        else:
            created = self.get_container_date(path)

        if created is None:
            created = datetime.fromtimestamp(st.st_mtime)

        return MediaFile(
            source_path=path,
            media_type=media_type,
            size_bytes=st.st_size,
            creation_time=created.replace(microsecond=0),
            larger_dimension=dimension,
            original_name=path.name,
        )

    def get_image_dimension(self, path: Path) -> int:
        """Larger of width/height, 0 when Pillow cannot decode the header (many RAWs)."""
        try:
            with Image.open(path) as img:
                width, height = img.size
        except (OSError, ValueError, Image.DecompressionBombError) as e:
            logging.debug(f"Pillow could not read dimensions of {path}: {e}")
            return 0
        return max(width, height)

    def get_image_date(self, path: Path) -> Optional[datetime]:
        try:
            with path.open('rb') as f:
                # details=False speeds up processing significantly
                tags = exifread.process_file(f, details=False)
        except Exception as e:
            logging.warning(f"ExifRead failed for {path}: {e}")
            return None
        return self._parse_exif_date(tags)

    def get_container_date(self, path: Path) -> Optional[datetime]:
        # Strategy 1: MediaInfo (fastest, usually sufficient)
        try:
            dt = self._mediainfo_date(path)
            if dt:
                return dt
        except Exception as e:
            logging.debug(f"MediaInfo failed for {path}: {e}")

        # Strategy 2: ExifTool (requires system install)
        try:
            return self._exiftool_date(path)
        except (OSError, subprocess.SubprocessError, ValueError) as e:
            # Debug only: a missing exiftool would otherwise spam the console
            logging.debug(f"ExifTool failed for {path}: {e}")
        return None

    # --- Internal Extraction Helpers ---

    def _mediainfo_date(self, path: Path) -> Optional[datetime]:
        mi = MediaInfo.parse(str(path))
        for track in mi.tracks:
            if track.track_type != "General":
                continue
            for field in config.MEDIAINFO_DATE_FIELDS:
                val = getattr(track, field, None)
                if val:
                    dt = self._parse_flexible_date(str(val))
                    if dt:
                        return dt
        return None

    def _exiftool_date(self, path: Path) -> Optional[datetime]:
        # -j = JSON output, -n = no print conversion
        cmd = ["exiftool", "-j", "-n", str(path)]
        out = subprocess.check_output(cmd, stderr=subprocess.DEVNULL, text=True)
        data_list = json.loads(out)
        if not data_list:
            return None

        tags = data_list[0]
        for field in config.EXIFTOOL_DATE_FIELDS:
            if tags.get(field):
                dt = self._parse_flexible_date(str(tags[field]))
                if dt:
                    return dt
        return None

    def _parse_exif_date(self, tags) -> Optional[datetime]:
        """Helper to parse standard EXIF date strings from exifread."""
        for tag in config.DATE_TAGS:
            if tag in tags:
                try:
                    # EXIF format is usually "YYYY:MM:DD HH:MM:SS"
                    dt_str = str(tags[tag]).strip().replace(':', '-', 2)
                    return datetime.strptime(dt_str, "%Y-%m-%d %H:%M:%S")
                except ValueError:
                    continue
        return None

    def _parse_flexible_date(self, dt_str: str) -> Optional[datetime]:
        """
        Handles various date formats (ISO, UTC prefixes/suffixes, Exiftool quirks).
        Returns a naive datetime object.
        """
        if not dt_str:
            return None

        clean = dt_str.replace("UTC", "").strip()

        # 1. ISO format (e.g. 2020-01-01T12:00:00)
        try:
            return datetime.fromisoformat(clean).replace(tzinfo=None)
        except ValueError:
            pass

        # 2. EXIF style "YYYY:MM:DD HH:MM:SS"
        try:
            clean_exif = clean.replace(":", "-", 2)
            if "." in clean_exif:
                clean_exif = clean_exif.split(".")[0]
            return datetime.strptime(clean_exif[:19], "%Y-%m-%d %H:%M:%S")
        except ValueError:
            pass

        return None
