from contextlib import contextmanager
import dataclasses
import logging
import math
from pathlib import Path
import re
from typing import Generator, Optional, Union

import numpy as np

from osu_mapping_helper.utils import parse_int, pretty_number

logger = logging.getLogger("OMH")

# Everything in here works on the text of a single difficulty (.osu file).
# Times are in milliseconds, positions in osu!pixels (512x384 playfield).

TIMING_POINTS_HEADER = "[TimingPoints]"
HIT_OBJECTS_HEADER = "[HitObjects]"
BREAKS_MARKER = "//Break Periods"
BREAK_EVENT_TYPE = "2"

# hit object type bits
TYPE_CIRCLE = 1
TYPE_SLIDER = 2
TYPE_NEW_COMBO = 4
TYPE_SPINNER = 8
TYPE_HOLD_NOTE = 128

EFFECT_KIAI = 1

TIMING_POINT_FIELDS = 8
SLIDER_TICK_EPSILON = 0.1  # matches the game, avoids a tick right on the slider end
SV_VERSION = 8  # files older than this ignore slider velocity for ticks
DEFAULT_SLIDER_MULTIPLIER = 1.4
DEFAULT_SLIDER_TICK_RATE = 1.0


class OsuFormatError(ValueError):
    pass

class ParseError(OsuFormatError):
    def __init__(self, what: str, line: Optional[str] = None) -> None:
        super().__init__()
        self.what = what
        self.line = line

    def __str__(self) -> str:
        if self.line is None:
            return f"Missing or invalid {self.what}"
        return f"Error while parsing {self.what}: {self.line!r}"

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self})"

class UnknownObjectTypeError(ParseError):
    def __init__(self, line: str, type_bits: int) -> None:
        super().__init__("hit object", line)
        self.type_bits = type_bits

    def __str__(self) -> str:
        return f"Could not determine hit object type ({self.type_bits}): {self.line!r}"

class NoOpError(OsuFormatError):
    """the requested edit would not change anything"""

class AlreadyAppliedError(OsuFormatError):
    """the edit was already applied to this difficulty"""

class InvalidInputError(OsuFormatError):
    pass


@dataclasses.dataclass
class TimingPoint:
    offset: float
    ms_per_beat: float
    meter: int = 4
    sample_set: int = 0
    sample_index: int = 0
    volume: int = 100
    uninherited: int = 1  # wire flag, 1 for red (BPM) lines
    effects: int = 0
    # old format versions write fewer fields, keep it that way on output
    field_count: int = dataclasses.field(default=TIMING_POINT_FIELDS, compare=False)

    @staticmethod
    def from_line(line: str) -> "TimingPoint":
        fields = line.strip().split(",")
        if len(fields) < 2:
            raise ParseError("timing point", line)
        try:
            values = [float(fields[0]), float(fields[1])] + [parse_int(f) for f in fields[2:TIMING_POINT_FIELDS]]
        except ValueError as exc:
            raise ParseError("timing point", line) from exc
        point = TimingPoint(*values, field_count=min(len(fields), TIMING_POINT_FIELDS))
        if len(fields) < 7:
            # no explicit flag, the sign decides
            point.uninherited = int(point.ms_per_beat > 0)
        return point

    def to_line(self) -> str:
        return ",".join([
            pretty_number(self.offset),
            pretty_number(self.ms_per_beat),
            str(self.meter),
            str(self.sample_set),
            str(self.sample_index),
            str(self.volume),
            str(self.uninherited),
            str(self.effects),
        ][:self.field_count])

    def is_inherited(self) -> bool:
        return self.ms_per_beat < 0

    def effective_multiplier(self) -> float:
        """slider velocity multiplier relative to the active BPM"""
        if not self.is_inherited():
            return 1.0
        return -100 / self.ms_per_beat

    @property
    def bpm(self) -> float:
        return 60000 / self.ms_per_beat

    @property
    def kiai(self) -> bool:
        return bool(self.effects & EFFECT_KIAI)

    def clone(self, **changes) -> "TimingPoint":
        # new points always get written in full, so changed volume etc. is not dropped
        return dataclasses.replace(self, field_count=TIMING_POINT_FIELDS, **changes)


def main_bpm(points: list[TimingPoint], hit_objects: list["HitObject"]) -> float:
    """
    BPM that is active for the longest time.
    Each BPM line counts until the next BPM line, the last one until the last hit object.
    On a tie, the BPM that occurs first wins.
    """
    bpm_points = [p for p in sorted(points, key=lambda p: p.offset) if p.ms_per_beat > 0]
    if not bpm_points:
        raise InvalidInputError("No uninherited timing point, cannot determine BPM")
    offsets = np.array([p.offset for p in bpm_points])
    last_time = hit_objects[-1].time if hit_objects else offsets[-1]
    spans = np.diff(offsets, append=last_time)

    durations: dict[float, float] = {}
    for point, span in zip(bpm_points, spans):
        durations[point.ms_per_beat] = durations.get(point.ms_per_beat, 0.0) + float(span)
    main_ms_per_beat: Optional[float] = None
    main_duration = 0.0
    for ms_per_beat, duration in durations.items():
        if main_ms_per_beat is None or duration > main_duration:
            main_ms_per_beat, main_duration = ms_per_beat, duration
    return 60000 / main_ms_per_beat

def timing_point_at(points: list[TimingPoint], time: float) -> Optional[TimingPoint]:
    """last point (in offset order) that is active at the given time"""
    for point in reversed(sorted(points, key=lambda p: p.offset)):
        if math.floor(point.offset) <= time:
            return point
    return None


@dataclasses.dataclass
class HitObject:
    x: int
    y: int
    time: int
    type: int
    hit_sound: int

    def _head(self) -> list[str]:
        return [str(self.x), str(self.y), str(self.time), str(self.type), str(self.hit_sound)]

    def _body(self) -> list[str]:
        return []

    def to_line(self) -> str:
        return ",".join(self._head() + self._body() + self.extras)

@dataclasses.dataclass
class Circle(HitObject):
    extras: list[str] = dataclasses.field(default_factory=list)

    @classmethod
    def from_fields(cls, x: int, y: int, time: int, type: int, hit_sound: int, rest: list[str]) -> "Circle":
        return cls(x, y, time, type, hit_sound, extras=rest)

@dataclasses.dataclass
class Slider(HitObject):
    curve_type: str
    control_points: list[tuple[int, int]]
    repeat: int
    pixel_length: float
    edge_sounds: Optional[str] = None
    edge_sets: Optional[str] = None
    extras: list[str] = dataclasses.field(default_factory=list)

    @classmethod
    def from_fields(cls, x: int, y: int, time: int, type: int, hit_sound: int, rest: list[str]) -> "Slider":
        curve_type, *curve_points = rest[0].split("|")
        control_points = []
        for p in curve_points:
            px, py = p.split(":")
            control_points.append((parse_int(px), parse_int(py)))
        repeat = parse_int(rest[1])
        if repeat < 1:
            raise ValueError(f"Slider repeat count must be positive, got {repeat}")
        return cls(
            x, y, time, type, hit_sound,
            curve_type=curve_type,
            control_points=control_points,
            repeat=repeat,
            pixel_length=float(rest[2]),
            edge_sounds=rest[3] if len(rest) > 3 else None,
            edge_sets=rest[4] if len(rest) > 4 else None,
            extras=rest[5:],
        )

    def _body(self) -> list[str]:
        out = [
            "|".join([self.curve_type] + [f"{px}:{py}" for px, py in self.control_points]),
            str(self.repeat),
            pretty_number(self.pixel_length),
        ]
        if self.edge_sounds is not None:
            out.append(self.edge_sounds)
        if self.edge_sets is not None:
            out.append(self.edge_sets)
        return out

@dataclasses.dataclass
class Spinner(HitObject):
    end_time: int
    extras: list[str] = dataclasses.field(default_factory=list)

    @classmethod
    def from_fields(cls, x: int, y: int, time: int, type: int, hit_sound: int, rest: list[str]) -> "Spinner":
        return cls(x, y, time, type, hit_sound, end_time=parse_int(rest[0]), extras=rest[1:])

    def _body(self) -> list[str]:
        return [str(self.end_time)]

@dataclasses.dataclass
class HoldNote(HitObject):
    end_time: int
    # end time is packed in front of the hit sample: endTime:sample:set:index:volume:filename
    hit_sample: Optional[str] = None
    extras: list[str] = dataclasses.field(default_factory=list)

    @classmethod
    def from_fields(cls, x: int, y: int, time: int, type: int, hit_sound: int, rest: list[str]) -> "HoldNote":
        end_time, sep, hit_sample = rest[0].partition(":")
        return cls(
            x, y, time, type, hit_sound,
            end_time=parse_int(end_time),
            hit_sample=hit_sample if sep else None,
            extras=rest[1:],
        )

    def _body(self) -> list[str]:
        if self.hit_sample is None:
            return [str(self.end_time)]
        return [f"{self.end_time}:{self.hit_sample}"]

    def to_circle(self) -> Circle:
        return Circle(
            self.x, self.y, self.time,
            (self.type & ~TYPE_HOLD_NOTE) | TYPE_CIRCLE,
            self.hit_sound,
            extras=([self.hit_sample] if self.hit_sample is not None else []) + self.extras,
        )

# checked in this order, the first matching bit decides
HIT_OBJECT_TYPES: tuple[tuple[int, type], ...] = (
    (TYPE_CIRCLE, Circle),
    (TYPE_SLIDER, Slider),
    (TYPE_SPINNER, Spinner),
    (TYPE_HOLD_NOTE, HoldNote),
)

def parse_hit_object(line: str) -> Union[Circle, Slider, Spinner, HoldNote]:
    fields = line.strip().split(",")
    if len(fields) < 5:
        raise ParseError("hit object", line)
    try:
        x, y, time, type_bits, hit_sound = (parse_int(f) for f in fields[:5])
    except ValueError as exc:
        raise ParseError("hit object", line) from exc
    for bit, cls in HIT_OBJECT_TYPES:
        if type_bits & bit:
            try:
                return cls.from_fields(x, y, time, type_bits, hit_sound, fields[5:])
            except (ValueError, IndexError) as exc:
                raise ParseError(cls.__name__.lower(), line) from exc
    raise UnknownObjectTypeError(line, type_bits)

def combo_contribution(
    hit_object: HitObject,
    timing_point: Optional[TimingPoint],
    slider_multiplier: float,
    slider_tick_rate: float,
    format_version: int,
) -> int:
    """how much combo the object gives (slider head, ticks, repeats and end count individually)"""
    if not isinstance(hit_object, Slider):
        return 1
    sv_multiplier = 1.0
    if timing_point is not None and format_version >= SV_VERSION:
        sv_multiplier = timing_point.effective_multiplier()
    pixels_per_beat = slider_multiplier * 100 * sv_multiplier
    num_beats = hit_object.pixel_length * hit_object.repeat / pixels_per_beat
    ticks = max(0, math.ceil((num_beats / hit_object.repeat - SLIDER_TICK_EPSILON) * slider_tick_rate) - 1)
    return 1 + hit_object.repeat + ticks * hit_object.repeat

def _remove_last(pattern: re.Pattern, text: str) -> str:
    matches = list(pattern.finditer(text))
    if not matches:
        return text
    return text[:matches[-1].start()] + text[matches[-1].end():]

@dataclasses.dataclass
class OsuFile:
    lines: list[str]
    newline: str = "\n"
    # file name is "Artist - Title (Mapper) [Difficulty].osu", dirname is the song folder
    filename: Optional[str] = None
    dirname: Optional[Path] = None

    @staticmethod
    def from_text(text: str, filename: Optional[str] = None, dirname: Optional[Path] = None) -> "OsuFile":
        newline = "\r\n" if "\r\n" in text else "\n"
        return OsuFile(lines=text.split(newline), newline=newline, filename=filename, dirname=dirname)

    @staticmethod
    def from_bytes(data: bytes, filename: Optional[str] = None, dirname: Optional[Path] = None) -> "OsuFile":
        # surrogateescape keeps invalid bytes intact for the output
        return OsuFile.from_text(data.decode("utf-8", errors="surrogateescape"), filename=filename, dirname=dirname)

    def to_text(self) -> str:
        return self.newline.join(self.lines)

    def to_bytes(self) -> bytes:
        return self.to_text().encode("utf-8", errors="surrogateescape")

    def clone(self) -> "OsuFile":
        return dataclasses.replace(self, lines=list(self.lines))

    # line helpers

    def _find_line(self, prefix: str, start: int = 0) -> Optional[int]:
        for i in range(start, len(self.lines)):
            if self.lines[i].startswith(prefix):
                return i
        return None

    def _section_range(self, header: str) -> tuple[int, int]:
        header_index = self._find_line(header)
        if header_index is None:
            raise ParseError(f"{header} section")
        end = self._find_line("[", header_index + 1)
        return header_index + 1, len(self.lines) if end is None else end

    def _section_lines(self, header: str) -> list[str]:
        start, end = self._section_range(header)
        return [
            l for l in self.lines[start:end]
            if l.strip() and not l.startswith("//")
        ]

    def _replace_section(self, header: str, new_lines: list[str]) -> None:
        start, end = self._section_range(header)
        old_lines = self.lines[start:end]
        trailing = 0
        while trailing < len(old_lines) and not old_lines[len(old_lines) - 1 - trailing].strip():
            trailing += 1
        self.lines[start:end] = new_lines + [""] * trailing

    def has_section(self, header: str) -> bool:
        return self._find_line(header) is not None

    # properties

    def get_property(self, name: str, default: Optional[str] = None) -> Optional[str]:
        index = self._find_line(name)
        if index is None:
            return default
        _, _, value = self.lines[index].partition(":")
        return value.strip()

    def set_property(self, name: str, value: Union[str, float]) -> bool:
        """returns False if the property does not exist"""
        index = self._find_line(name)
        if index is None:
            logger.debug(f"Property {name} not found, not setting it")
            return False
        if not isinstance(value, str):
            value = pretty_number(value)
        key, _, old_value = self.lines[index].partition(":")
        # keep the "key: value" or "key:value" style of the line
        spacing = old_value[:len(old_value) - len(old_value.lstrip())]
        self.lines[index] = f"{key}:{spacing}{value}"
        return True

    def insert_property_after(self, anchor: str, name: str, value: Union[str, float]) -> None:
        index = self._find_line(anchor)
        if index is None:
            raise ParseError(f"{anchor} property")
        if not isinstance(value, str):
            value = pretty_number(value)
        self.lines.insert(index + 1, f"{name}:{value}")

    @property
    def format_version(self) -> int:
        m = re.search(r"\d+", self.lines[0]) if self.lines else None
        if m is None:
            raise ParseError("format version", self.lines[0] if self.lines else "")
        return int(m[0])

    def set_format_version(self, version: int) -> None:
        if self.format_version != version:
            self.lines[0] = re.sub(r"\d+", str(version), self.lines[0], count=1)

    # naming

    def rename_file(self, suffix: str) -> None:
        """insert suffix at the end of the difficulty name in the file name"""
        if self.filename is None:
            return
        bracket = self.filename.rfind("]")
        if bracket == -1:
            self.filename = f"{Path(self.filename).stem} {suffix}.osu"
        else:
            self.filename = f"{self.filename[:bracket]} {suffix}].osu"

    def append_suffix(self, suffix: str) -> None:
        """append to the difficulty name, in both the Version property and the file name"""
        version = self.get_property("Version")
        if version is None:
            logger.warning(f"No difficulty name found, could not append {suffix!r}")
        else:
            self.set_property("Version", f"{version} {suffix}")
        self.rename_file(suffix)

    def remove_from_name(self, pattern: re.Pattern) -> None:
        """remove the last match of pattern from the difficulty name, artist and title are left alone"""
        version = self.get_property("Version")
        if version is not None:
            self.set_property("Version", _remove_last(pattern, version))
        if self.filename is not None:
            bracket = self.filename.rfind("[")
            if bracket == -1:
                self.filename = _remove_last(pattern, self.filename)
            else:
                self.filename = self.filename[:bracket] + _remove_last(pattern, self.filename[bracket:])

    # typed sections

    def get_timing_points(self) -> list[TimingPoint]:
        return [TimingPoint.from_line(l) for l in self._section_lines(TIMING_POINTS_HEADER)]

    def set_timing_points(self, points: list[TimingPoint]) -> None:
        # sorted() is stable, so points at the same offset keep their order
        self._replace_section(TIMING_POINTS_HEADER, [p.to_line() for p in sorted(points, key=lambda p: p.offset)])

    def get_hit_objects(self) -> list[HitObject]:
        return [parse_hit_object(l) for l in self._section_lines(HIT_OBJECTS_HEADER)]

    def set_hit_objects(self, hit_objects: list[HitObject]) -> None:
        self._replace_section(HIT_OBJECTS_HEADER, [o.to_line() for o in sorted(hit_objects, key=lambda o: o.time)])

    def _breaks_range(self) -> Optional[tuple[int, int]]:
        marker = self._find_line(BREAKS_MARKER)
        if marker is None:
            return None
        end = marker + 1
        while end < len(self.lines) and not self.lines[end].startswith(("//", "[")):
            end += 1
        # blank lines separating [Events] from the next section are not part of the block
        while end > marker + 1 and not self.lines[end - 1].strip():
            end -= 1
        return marker + 1, end

    def get_breaks(self) -> list[tuple[int, int]]:
        breaks_range = self._breaks_range()
        if breaks_range is None:
            return []
        out = []
        for line in self.lines[slice(*breaks_range)]:
            if not line.strip():
                continue
            fields = line.strip().split(",")
            try:
                out.append((parse_int(fields[1]), parse_int(fields[2])))
            except (ValueError, IndexError) as exc:
                raise ParseError("break period", line) from exc
        return out

    def set_breaks(self, breaks: list[tuple[int, int]]) -> None:
        breaks_range = self._breaks_range()
        if breaks_range is None:
            if breaks:
                raise ParseError(f"{BREAKS_MARKER} block")
            return
        start, end = breaks_range
        self.lines[start:end] = [f"{BREAK_EVENT_TYPE},{s},{e}" for s, e in sorted(breaks)]

    # statistics

    def combo_at(self, time: float) -> int:
        """combo a full combo play has right before the given time"""
        slider_multiplier = float(self.get_property("SliderMultiplier") or DEFAULT_SLIDER_MULTIPLIER)
        slider_tick_rate = float(self.get_property("SliderTickRate") or DEFAULT_SLIDER_TICK_RATE)
        format_version = self.format_version
        points = self.get_timing_points() if self.has_section(TIMING_POINTS_HEADER) else []
        return sum(
            combo_contribution(o, timing_point_at(points, o.time), slider_multiplier, slider_tick_rate, format_version)
            for o in self.get_hit_objects()
            if o.time < time
        )

    @property
    def max_combo(self) -> int:
        return self.combo_at(math.inf)

# file access

def import_file(file_path: Union[str, Path]) -> OsuFile:
    fp = Path(file_path)
    return OsuFile.from_bytes(fp.read_bytes(), filename=fp.name, dirname=fp.parent)

def export_file(osu_file: OsuFile, directory: Union[str, Path, None] = None) -> Path:
    if directory is None:
        directory = osu_file.dirname
    if directory is None or osu_file.filename is None:
        raise ValueError("Output location unknown, need both directory and file name")
    fp_out = Path(directory) / osu_file.filename
    fp_out.write_bytes(osu_file.to_bytes())
    return fp_out

@contextmanager
def file_data(filename: Union[str, Path], output_dir: Union[str, Path, None] = None) -> Generator[OsuFile, None, None]:
    # Usage:
    #   with osu_format.file_data("map.osu") as f:
    #     modifiers.remove_lns(f)
    # Nothing gets written when the block raises.
    fp = Path(filename)
    logger.info(f"Loading {fp.absolute()}")
    f = import_file(fp)
    yield f
    fp_out = export_file(f, output_dir)
    logger.info(f"Saved {fp_out.absolute()}")
