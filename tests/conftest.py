"""
Shared sample beatmaps and fixtures.

SAMPLE_OSU is a small osu!standard difficulty with three BPM sections
(500, 400 and 300 ms per beat spanning 100, 5000 and 200 ms until the last object),
one SV line, a break and one of each standard object type.
SAMPLE_MANIA contains hold notes.
"""

from io import BytesIO
from pathlib import Path

import numpy as np
import pytest
import soundfile

from osu_mapping_helper.osu_format import OsuFile

SAMPLE_FILENAME = "Test Artist - Test Song (Tester) [Insane].osu"
SONG_FOLDER_NAME = "123 Test Artist - Test Song"

SAMPLE_OSU = "\r\n".join([
    "osu file format v14",
    "",
    "[General]",
    "AudioFilename: audio.wav",
    "AudioLeadIn: 0",
    "PreviewTime: 10001",
    "Mode: 0",
    "",
    "[Editor]",
    "Bookmarks: 2000,1000",
    "DistanceSpacing: 1",
    "",
    "[Metadata]",
    "Title:Test Song",
    "Artist:Test Artist",
    "Creator:Tester",
    "Version:Insane",
    "BeatmapID:12345",
    "BeatmapSetID:678",
    "",
    "[Difficulty]",
    "HPDrainRate:5",
    "CircleSize:4",
    "OverallDifficulty:8",
    "ApproachRate:9",
    "SliderMultiplier:1",
    "SliderTickRate:1",
    "",
    "[Events]",
    "//Background and Video events",
    '0,0,"bg.png",0,0',
    "//Break Periods",
    "2,3000,4500",
    "//Storyboard Layer 0 (Background)",
    "//Storyboard Sound Samples",
    "",
    "[TimingPoints]",
    "0,500,4,2,0,60,1,0",
    "100,400,4,2,0,60,1,0",
    "1000,-50,4,2,0,60,0,1",
    "5100,300,4,2,0,60,1,0",
    "",
    "",
    "[HitObjects]",
    "256,192,500,1,0,0:0:0:0:",
    "100,100,1500,2,0,L|200:100,1,80",
    "300,200,2500,12,0,2800,0:0:0:0:",
    "256,192,5300,5,0,0:0:0:0:",
    "",
])

SAMPLE_MANIA = "\n".join([
    "osu file format v12",
    "",
    "[General]",
    "AudioFilename: audio.mp3",
    "Mode: 3",
    "",
    "[Metadata]",
    "Version:4K Hard",
    "BeatmapID:99",
    "",
    "[Difficulty]",
    "HPDrainRate:8",
    "CircleSize:4",
    "OverallDifficulty:7",
    "SliderMultiplier:1.4",
    "SliderTickRate:1",
    "",
    "[TimingPoints]",
    "0,500,4,1,0,100,1,0",
    "",
    "[HitObjects]",
    "64,192,1000,128,0,1500:0:0:0:0:",
    "192,192,1200,1,0,0:0:0:0:",
    "320,192,1400,128,2,2000:1:2:0:30:hit.wav",
    "",
])


def build_osu(hit_object_times: list[int], version: str = "Normal", bookmarks: str = "", timing_points: tuple[str, ...] = ("0,500,4,2,0,100,1,0",)) -> OsuFile:
    """minimal difficulty with one circle at each of the given times"""
    lines = [
        "osu file format v14",
        "",
        "[Editor]",
        f"Bookmarks: {bookmarks}",
        "",
        "[Metadata]",
        f"Version:{version}",
        "BeatmapID:1",
        "",
        "[Difficulty]",
        "SliderMultiplier:1",
        "SliderTickRate:1",
        "",
        "[TimingPoints]",
        *timing_points,
        "",
        "[HitObjects]",
        *(f"256,192,{t},1,0,0:0:0:0:" for t in hit_object_times),
        "",
    ]
    return OsuFile.from_text("\n".join(lines), filename=f"A - B (C) [{version}].osu")


@pytest.fixture
def osu_file() -> OsuFile:
    return OsuFile.from_text(SAMPLE_OSU, filename=SAMPLE_FILENAME)


@pytest.fixture
def mania_file() -> OsuFile:
    return OsuFile.from_text(SAMPLE_MANIA, filename="Test Artist - Test Song (Tester) [4K Hard].osu")


def sine_wav(duration: float = 1.0, samplerate: int = 22050) -> bytes:
    t = np.arange(int(duration * samplerate)) / samplerate
    data = 0.5 * np.sin(2 * np.pi * 440 * t)
    bio = BytesIO()
    soundfile.write(bio, data, samplerate, format="WAV")
    return bio.getvalue()


@pytest.fixture
def song_folder(tmp_path: Path) -> Path:
    """
    Songs directory layout:
        tmp_path/123 Test Artist - Test Song/
            Test Artist - Test Song (Tester) [Insane].osu
            audio.wav
            bg.png
    """
    folder = tmp_path / SONG_FOLDER_NAME
    folder.mkdir()
    (folder / SAMPLE_FILENAME).write_bytes(SAMPLE_OSU.encode("utf-8"))
    (folder / "audio.wav").write_bytes(sine_wav())
    (folder / "bg.png").write_bytes(b"\x89PNG\r\n\x1a\nnot really a png")
    return folder
