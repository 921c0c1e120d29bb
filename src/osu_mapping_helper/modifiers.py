import logging
import math
import re
from typing import Union

from .osu_format import (
    OsuFile, TimingPoint, Spinner, HoldNote,
    AlreadyAppliedError, InvalidInputError, NoOpError, ParseError,
    TYPE_SPINNER, TYPE_NEW_COMBO,
    main_bpm, timing_point_at,
)
from .utils import parse_int, pretty_list, pretty_number, round_half_away

# Note: All of these modify the given file in place and return it for convenience.
# On error they raise before touching the file, unless noted otherwise.

logger = logging.getLogger("OMH")

STAT_PROPERTIES = {
    "CS": "CircleSize",
    "AR": "ApproachRate",
    "OD": "OverallDifficulty",
    "HP": "HPDrainRate",
}
FRACTIONAL_STATS_VERSION = 13  # older versions truncate difficulty stats to integers
MISSING_AR = -1  # legacy maps use OD as AR

COMBO_TAG = re.compile(r"\s[+]([0-9]+)x")
NO_SVS_TAG = "No SVs"
NO_LNS_TAG = "No LNs"
SPLIT_TAG = "(Split)"

DEFAULT_COMBO = 100
COMBO_SPINNER_LEAD_IN = 1000  # ms before the first object
COMBO_SPINNER_POSITION = (256, 192)  # center of playfield
COMBO_SPINNER_SAMPLE = "0:0:0:0:"
NEUTRAL_SV = -100.0


def _reset_beatmap_id(osu_file: OsuFile) -> None:
    # edited copies must not claim to be the ranked difficulty
    osu_file.set_property("BeatmapID", 0)

def set_difficulty_stat(osu_file: OsuFile, stat: str, value: float) -> OsuFile:
    stat = stat.upper()
    if stat not in STAT_PROPERTIES:
        raise InvalidInputError(f"Unknown difficulty stat {stat!r}, must be {pretty_list(list(STAT_PROPERTIES))}")
    prop = STAT_PROPERTIES[stat]
    current = osu_file.get_property(prop)
    missing_ar = current is None and prop == "ApproachRate"
    if not current and prop == "ApproachRate":
        current = str(MISSING_AR)
    elif current is None:
        raise ParseError(f"{prop} property")
    try:
        current_value = float(current)
    except ValueError as exc:
        raise ParseError(f"{prop} property", current) from exc
    if current_value == value:
        raise NoOpError(f"{stat} is already {pretty_number(value)}!")

    if missing_ar:
        # For older maps without AR, insert it after OD
        osu_file.insert_property_after("OverallDifficulty", prop, MISSING_AR)
    if not float(value).is_integer() and osu_file.format_version < FRACTIONAL_STATS_VERSION:
        osu_file.set_format_version(FRACTIONAL_STATS_VERSION)
    osu_file.set_property(prop, value)
    _reset_beatmap_id(osu_file)
    osu_file.append_suffix(f"{stat}{pretty_number(value)}")
    return osu_file

def _scale_time(time: float, rate: float) -> int:
    return round_half_away(time / rate)

def set_rate(osu_file: OsuFile, rate: float) -> OsuFile:
    """
    Scale everything timed by 1/rate, ie 1.5 means 50% faster.
    Inherited timing points are relative to BPM, so they stay as they are.
    The audio has to be changed separately, see audio_format.change_rate.
    """
    if not rate > 0:
        raise InvalidInputError("Rate must be greater than 0")
    points = osu_file.get_timing_points()
    hit_objects = osu_file.get_hit_objects()
    breaks = osu_file.get_breaks()

    for point in points:
        if point.ms_per_beat > 0:
            point.ms_per_beat /= rate
        point.offset /= rate
    for hit_object in hit_objects:
        if isinstance(hit_object, (Spinner, HoldNote)):
            hit_object.end_time = _scale_time(hit_object.end_time, rate)
        hit_object.time = _scale_time(hit_object.time, rate)

    osu_file.append_suffix(f"{pretty_number(rate)}x")
    preview_time = osu_file.get_property("PreviewTime")
    # -1 means "no preview point"
    if preview_time and parse_int(preview_time) >= 0:
        osu_file.set_property("PreviewTime", _scale_time(parse_int(preview_time), rate))
    _reset_beatmap_id(osu_file)
    osu_file.set_breaks([(_scale_time(s, rate), _scale_time(e, rate)) for s, e in breaks])
    osu_file.set_timing_points(points)
    osu_file.set_hit_objects(hit_objects)
    return osu_file

def add_combo(osu_file: OsuFile, extra: int = DEFAULT_COMBO) -> OsuFile:
    """
    Add combo by inserting zero-length spinners before the first object.
    Applying it again stacks onto the existing spinners, so "+100x" and "+50x" becomes "+150x".
    """
    if extra < 1:
        raise InvalidInputError("Combo to add must be at least 1")
    hit_objects = osu_file.get_hit_objects()
    if not hit_objects:
        raise InvalidInputError("Map has no hit objects")
    points = osu_file.get_timing_points()
    first = min(hit_objects, key=lambda o: o.time)

    # the tag added last is the one counting the spinners
    tags = COMBO_TAG.findall(osu_file.get_property("Version", ""))
    stacking = bool(tags)
    spinner_time = first.time if stacking else first.time - COMBO_SPINNER_LEAD_IN

    if not stacking:
        governing = timing_point_at(points, first.time)
        if governing is None:
            raise InvalidInputError(f"No timing point before the first object at {first.time}")
        first_offset = min(p.offset for p in points)
        changes: dict[str, Union[int, float]] = {}
        # the check is on the wire flag: a BPM line (uninherited) other than the first one
        # would restart the beat grid, so it is cloned as a neutral SV line instead
        if governing.uninherited and governing.offset != first_offset:
            changes = {"ms_per_beat": NEUTRAL_SV, "uninherited": 0}
        # silence the spinners
        points.append(governing.clone(offset=spinner_time, volume=0, **changes))
        if governing.offset < first.time:
            # restore the original sound for the first object
            points.append(governing.clone(offset=first.time, **changes))

    previous = int(tags[-1]) if stacking else 0
    if stacking:
        osu_file.remove_from_name(COMBO_TAG)
    osu_file.append_suffix(f"+{previous + extra}x")
    _reset_beatmap_id(osu_file)

    x, y = COMBO_SPINNER_POSITION
    hit_objects.extend(
        Spinner(x, y, spinner_time, TYPE_SPINNER | TYPE_NEW_COMBO, 0, end_time=spinner_time, extras=[COMBO_SPINNER_SAMPLE])
        for _ in range(extra)
    )
    osu_file.set_hit_objects(hit_objects)
    if not stacking:
        osu_file.set_timing_points(points)
    return osu_file

def remove_svs(osu_file: OsuFile) -> OsuFile:
    """
    Make every slider velocity 1.0x relative to the main BPM.
    BPM changes stay, so the beat grid is not affected.
    """
    if NO_SVS_TAG in osu_file.get_property("Version", ""):
        raise AlreadyAppliedError("Map already has no SVs!")
    points = sorted(osu_file.get_timing_points(), key=lambda p: p.offset)
    main = main_bpm(points, osu_file.get_hit_objects())
    logger.info(f"Estimated BPM: {pretty_number(main)}")

    current_bpm = main
    out: list[TimingPoint] = []
    for point in points:
        if point.is_inherited():
            point.ms_per_beat = -100 * current_bpm / main
            out.append(point)
        elif point.ms_per_beat > 0:
            current_bpm = point.bpm
            out.append(point)
            # goes right after the BPM line, since sorting is stable
            out.append(point.clone(ms_per_beat=-100 * current_bpm / main, uninherited=0))
        else:
            out.append(point)
    osu_file.set_timing_points(out)
    osu_file.append_suffix(NO_SVS_TAG)
    _reset_beatmap_id(osu_file)
    return osu_file

def remove_lns(osu_file: OsuFile) -> OsuFile:
    """replace hold notes with regular notes"""
    if NO_LNS_TAG in osu_file.get_property("Version", ""):
        raise AlreadyAppliedError("Map already has no LNs!")
    hit_objects = [
        o.to_circle() if isinstance(o, HoldNote) else o
        for o in osu_file.get_hit_objects()
    ]
    osu_file.set_hit_objects(hit_objects)
    osu_file.append_suffix(NO_LNS_TAG)
    _reset_beatmap_id(osu_file)
    return osu_file

def mark_for_split(osu_file: OsuFile) -> OsuFile:
    """tag a copy of a difficulty, so it can be split once bookmarks are placed"""
    if SPLIT_TAG in osu_file.get_property("Version", ""):
        raise AlreadyAppliedError("Map is already marked for split!")
    osu_file.append_suffix(SPLIT_TAG)
    _reset_beatmap_id(osu_file)
    return osu_file

def split_by_bookmarks(osu_file: OsuFile) -> list[OsuFile]:
    """
    Split the hit objects at the bookmarks into separate difficulties.
    Objects exactly on a bookmark end up in both sections. The source is not modified.
    """
    difficulty = osu_file.get_property("Version", "")
    if SPLIT_TAG not in difficulty:
        raise InvalidInputError("The map is not marked for split.")
    difficulty = difficulty.split(SPLIT_TAG)[0].strip()
    bookmark_str = osu_file.get_property("Bookmarks") or ""
    try:
        bookmarks = sorted(parse_int(b) for b in bookmark_str.split(",") if b.strip())
    except ValueError as exc:
        raise ParseError("bookmarks", bookmark_str) from exc
    if not bookmarks:
        raise InvalidInputError("No bookmarks set!")
    if not osu_file.has_section("[HitObjects]"):
        raise ParseError("[HitObjects] section")

    sections = [0, *bookmarks, math.inf]
    count = len(sections) - 1
    outputs = []
    for i, (start, end) in enumerate(zip(sections[:-1], sections[1:]), start=1):
        section_file = osu_file.clone()
        section_file.set_property("Version", f"{difficulty} ({i}/{count})")
        _reset_beatmap_id(section_file)
        section_file.rename_file(str(i))
        section_file.set_hit_objects([
            o for o in section_file.get_hit_objects()
            if start <= o.time <= end
        ])
        outputs.append(section_file)
    logger.info(f"Split into {count} sections")
    return outputs
