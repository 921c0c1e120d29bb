from argparse import ArgumentParser, RawDescriptionHelpFormatter
import logging
from pathlib import Path
import sys

import pyperclip

from . import audio_format, modifiers, osu_format, osz_archive, utils, __version__

STAT_OPTIONS = tuple(modifiers.STAT_PROPERTIES)  # CS, AR, OD, HP

def get_parser():
    parser = ArgumentParser(
        formatter_class=RawDescriptionHelpFormatter,
        prog=f"python3 -m {__package__}.{Path(__file__).stem}",
        description='\n'.join([
            "Create edited copies of osu! difficulties.",
            "",
            "Exactly one edit is done per call:",
            "\tStat changes, combo and No SVs/LNs write a new .osu next to the input",
            "\tRate changes write '<song folder> <rate>.osz' with adjusted audio next to the song folder",
            "\t--mark-split writes '<song folder> Copy.osz', place bookmarks in the imported copy, then use --split on it",
            "",
            "Number values accept decimals, percentages and fractions (ie '1.5', '150%' or '3/2')",
        ]),
        epilog=f"Version: {__version__}",
    )
    parser.add_argument("input", type=Path, nargs="?", help="Input .osu file. When omitted, the path is taken from the clipboard")
    parser.add_argument("-o", "--output-dir", type=Path, help="Write output here instead of next to the input")
    parser.add_argument("-v", "--verbose", action="store_true", help="Show debug output")

    edit_group = parser.add_argument_group("edits").add_mutually_exclusive_group(required=True)
    for stat, prop in modifiers.STAT_PROPERTIES.items():
        edit_group.add_argument(f"--{stat.lower()}", type=utils.parse_number, metavar="VALUE", help=f"Change {prop}")
    edit_group.add_argument("-r", "--rate", type=utils.parse_number, help="Change playback rate, ie 1.5 for 50%% faster. Also changes the audio")
    edit_group.add_argument("-c", "--combo", type=int, nargs="?", const=modifiers.DEFAULT_COMBO, metavar="AMOUNT", help=f"Add combo using spinners before the first object. Default: {modifiers.DEFAULT_COMBO}")
    edit_group.add_argument("--no-svs", action="store_true", help="Normalize all slider velocities to the main BPM")
    edit_group.add_argument("--no-lns", action="store_true", help="Replace hold notes with regular notes")
    edit_group.add_argument("--mark-split", action="store_true", help="Create a copy that is marked for splitting")
    edit_group.add_argument("--split", action="store_true", help="Split a marked copy at its bookmarks")
    edit_group.add_argument("--info", action="store_true", help="Only show format version, main BPM and max combo")

    audio_group = parser.add_argument_group("audio")
    audio_group.add_argument("--pitch-shift", action="store_true", help="When changing rate, change pitch too (like nightcore) instead of keeping it")
    return parser

def abort(reason: str):
    logging.error(reason)
    sys.exit(1)

def resolve_input(options) -> Path:
    if options.input is not None:
        input_path = options.input
    else:
        clipboard = pyperclip.paste().strip().strip('"')
        if not clipboard:
            abort("No input file given and clipboard is empty")
        input_path = Path(clipboard)
        logging.info(f"Using path from clipboard: {input_path}")
    if not input_path.is_file():
        abort("Input file is not a file, is the path correct?")
    if input_path.suffix.lower() != ".osu":
        abort(f"Input file is not an .osu file: {input_path.name}")
    return input_path

def show_info(osu_file: osu_format.OsuFile) -> None:
    hit_objects = osu_file.get_hit_objects()
    counts: dict[str, int] = {}
    for o in hit_objects:
        counts[type(o).__name__] = counts.get(type(o).__name__, 0) + 1
    logging.info(f"{osu_file.filename}")
    logging.info(f"\tFormat version: {osu_file.format_version}")
    logging.info(f"\tMain BPM: {utils.pretty_number(osu_format.main_bpm(osu_file.get_timing_points(), hit_objects))}")
    logging.info(f"\tMax combo: {osu_file.max_combo}")
    logging.info(f"\tObjects: {utils.pretty_list([f'{n} {t}s' for t, n in counts.items()]) or 'none'}")

def generate_rate(osu_file: osu_format.OsuFile, input_path: Path, rate: float, pitch_shift: bool, output_dir: Path) -> Path:
    modifiers.set_rate(osu_file, rate)
    audio_name = osu_file.get_property("AudioFilename")
    if not audio_name:
        abort("Map has no AudioFilename, cannot change audio rate")
    audio_path = input_path.parent / audio_name
    logging.info(f"Generating {'pitch shifted' if pitch_shift else 'time stretched'} audio from {audio_path.name}")
    new_audio = audio_format.change_rate(audio_path.read_bytes(), rate, pitch_shift=pitch_shift, out_format=audio_path.suffix)
    osz_path = output_dir / f"{input_path.parent.name} {utils.pretty_number(rate)}.osz"
    osz_archive.build_osz(
        osz_path, [osu_file],
        source_dir=input_path.parent,
        patterns=osz_archive.IMAGE_PATTERNS,
        replacements={audio_name: new_audio},
    )
    return osz_path

def generate_copy(osu_file: osu_format.OsuFile, input_path: Path, output_dir: Path) -> Path:
    modifiers.mark_for_split(osu_file)
    osz_path = output_dir / f"{input_path.parent.name} Copy.osz"
    osz_archive.build_osz(
        osz_path, [osu_file],
        source_dir=input_path.parent,
        patterns=osz_archive.AUDIO_PATTERNS + osz_archive.IMAGE_PATTERNS,
    )
    return osz_path

def main(options):
    input_path = resolve_input(options)
    osu_dir = options.output_dir or input_path.parent
    # archives go next to the song folder, so they don't get imported twice
    osz_dir = options.output_dir or input_path.parent.parent

    try:
        stat = next(((s, getattr(options, s.lower())) for s in STAT_OPTIONS if getattr(options, s.lower()) is not None), None)
        if stat is not None:
            logging.info(f"Generating {stat[0]}{utils.pretty_number(stat[1])} edit for {input_path}")
            with osu_format.file_data(input_path, osu_dir) as f:
                modifiers.set_difficulty_stat(f, *stat)
        elif options.combo is not None:
            logging.info(f"Generating +{options.combo} combo edit for {input_path}")
            with osu_format.file_data(input_path, osu_dir) as f:
                modifiers.add_combo(f, options.combo)
        elif options.no_svs:
            logging.info(f"Generating No SVs edit for {input_path}")
            with osu_format.file_data(input_path, osu_dir) as f:
                modifiers.remove_svs(f)
        elif options.no_lns:
            logging.info(f"Generating No LNs edit for {input_path}")
            with osu_format.file_data(input_path, osu_dir) as f:
                modifiers.remove_lns(f)
        else:
            osu_file = osu_format.import_file(input_path)
            if options.info:
                show_info(osu_file)
            elif options.rate is not None:
                logging.info(f"Generating {utils.pretty_number(options.rate)}x edit for {input_path}")
                osz_path = generate_rate(osu_file, input_path, options.rate, options.pitch_shift, osz_dir)
                logging.info(f"Saved {osz_path.absolute()}")
            elif options.mark_split:
                logging.info(f"Generating copy for {input_path}")
                osz_path = generate_copy(osu_file, input_path, osz_dir)
                logging.info(f"Saved {osz_path.absolute()}")
            elif options.split:
                logging.info(f"Generating split for {input_path}")
                for section_file in modifiers.split_by_bookmarks(osu_file):
                    fp_out = osu_format.export_file(section_file, osu_dir)
                    logging.info(f"Saved {fp_out.absolute()}")
    except osu_format.NoOpError as noe:
        # nothing to do is not an error
        logging.warning(str(noe))
        return
    except osu_format.OsuFormatError as ofe:
        abort(f"Could not edit {input_path.name}: {ofe}")
    except ValueError as ve:
        abort(f"Invalid input: {ve}")
    except audio_format.UnsupportedAudioFormatError as uafe:
        abort(str(uafe))
    except OSError as ose:
        abort(f"File access failed: {ose!r}")
    logging.info("Done!")

def entrypoint():
    options = get_parser().parse_args()
    logging.basicConfig(level=logging.DEBUG if options.verbose else logging.INFO, format='%(asctime)s [%(levelname)s] %(message)s')
    main(options)

if __name__ == "__main__":
    entrypoint()
