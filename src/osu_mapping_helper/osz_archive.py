from io import BytesIO
import logging
from pathlib import Path
from typing import Iterable, Optional, Union
import zipfile

from .osu_format import OsuFile

logger = logging.getLogger("OMH")

IMAGE_PATTERNS = ("*.png", "*.jpg")
AUDIO_PATTERNS = ("*.mp3", "*.ogg")

def collect_files(directory: Path, patterns: Iterable[str]) -> dict[str, bytes]:
    """read all files in the directory (not recursive) matching any of the glob patterns"""
    out: dict[str, bytes] = {}
    for pattern in patterns:
        for fp in sorted(directory.glob(pattern)):
            if fp.is_file():
                out[fp.name] = fp.read_bytes()
    return out

def build_osz(
    output_file: Union[Path, BytesIO],
    osu_files: list[OsuFile],
    *,
    source_dir: Optional[Path] = None,
    patterns: Iterable[str] = (),
    replacements: Optional[dict[str, bytes]] = None,
) -> None:
    """
    Pack difficulties into an .osz (zip) archive.
    Files from source_dir matching the patterns are added as-is, replacements take priority over them.
    """
    out_buffer = output_file if isinstance(output_file, BytesIO) else BytesIO()  # buffer output zip file in memory, only write on success

    entries: dict[str, bytes] = {}
    if source_dir is not None:
        entries |= collect_files(source_dir, patterns)
    if replacements:
        entries |= replacements
    for f in osu_files:
        if f.filename is None:
            raise ValueError("Cannot pack a difficulty without file name")
        entries[f.filename] = f.to_bytes()

    with zipfile.ZipFile(out_buffer, "w", compression=zipfile.ZIP_DEFLATED) as outzip:
        for name, data in entries.items():
            outzip.writestr(name, data)
    logger.debug(f"Packed {len(entries)} files")

    # write output zip
    if isinstance(output_file, BytesIO):
        output_file.seek(0)
    else:
        output_file.write_bytes(out_buffer.getbuffer())
