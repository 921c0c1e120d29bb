from io import BytesIO
import logging
from pathlib import Path
import zipfile

import pytest
import soundfile

from osu_mapping_helper import cli, modifiers
from osu_mapping_helper.osu_format import export_file, import_file

from conftest import SAMPLE_FILENAME, SONG_FOLDER_NAME


def run(*args: str) -> None:
    cli.main(cli.get_parser().parse_args([str(a) for a in args]))


def osu_files(folder: Path) -> set[str]:
    return {fp.name for fp in folder.glob("*.osu")}


def test_edit_required(song_folder: Path) -> None:
    with pytest.raises(SystemExit):
        cli.get_parser().parse_args([str(song_folder / SAMPLE_FILENAME)])


def test_edits_exclusive(song_folder: Path) -> None:
    with pytest.raises(SystemExit):
        cli.get_parser().parse_args([str(song_folder / SAMPLE_FILENAME), "--cs", "5", "--no-svs"])


def test_number_formats() -> None:
    options = cli.get_parser().parse_args(["map.osu", "--rate", "3/2"])
    assert options.rate == 1.5
    options = cli.get_parser().parse_args(["map.osu", "--od", "95%"])
    assert options.od == 0.95
    options = cli.get_parser().parse_args(["map.osu", "--combo"])
    assert options.combo == modifiers.DEFAULT_COMBO


def test_stat(song_folder: Path) -> None:
    run(song_folder / SAMPLE_FILENAME, "--cs", "6")
    new_file = song_folder / "Test Artist - Test Song (Tester) [Insane CS6].osu"
    assert new_file.is_file()
    assert "CircleSize:6" in import_file(new_file).lines
    # input untouched
    assert "CircleSize:4" in import_file(song_folder / SAMPLE_FILENAME).lines


def test_output_dir(song_folder: Path, tmp_path: Path) -> None:
    out_dir = tmp_path / "out"
    out_dir.mkdir()
    run(song_folder / SAMPLE_FILENAME, "--no-svs", "-o", out_dir)
    assert osu_files(out_dir) == {"Test Artist - Test Song (Tester) [Insane No SVs].osu"}
    assert osu_files(song_folder) == {SAMPLE_FILENAME}


def test_no_op(song_folder: Path, caplog: pytest.LogCaptureFixture) -> None:
    run(song_folder / SAMPLE_FILENAME, "--cs", "4")
    assert osu_files(song_folder) == {SAMPLE_FILENAME}
    assert "already" in caplog.text


def test_combo(song_folder: Path) -> None:
    run(song_folder / SAMPLE_FILENAME, "--combo", "20")
    assert import_file(song_folder / "Test Artist - Test Song (Tester) [Insane +20x].osu").max_combo == 25


def test_rate(song_folder: Path, tmp_path: Path) -> None:
    run(song_folder / SAMPLE_FILENAME, "--rate", "1.5")
    osz = tmp_path / f"{SONG_FOLDER_NAME} 1.5.osz"
    assert osz.is_file()
    with zipfile.ZipFile(osz) as z:
        assert set(z.namelist()) == {"Test Artist - Test Song (Tester) [Insane 1.5x].osu", "audio.wav", "bg.png"}
        samples, sr = soundfile.read(BytesIO(z.read("audio.wav")))
    assert len(samples) / sr == pytest.approx(1 / 1.5, abs=0.01)


def test_mark_and_split(song_folder: Path, tmp_path: Path) -> None:
    run(song_folder / SAMPLE_FILENAME, "--mark-split")
    osz = tmp_path / f"{SONG_FOLDER_NAME} Copy.osz"
    marked_name = "Test Artist - Test Song (Tester) [Insane (Split)].osu"
    with zipfile.ZipFile(osz) as z:
        assert marked_name in z.namelist()
        assert "bg.png" in z.namelist()
        # pretend the game imported it
        (song_folder / marked_name).write_bytes(z.read(marked_name))

    run(song_folder / marked_name, "--split")
    assert osu_files(song_folder) == {
        SAMPLE_FILENAME,
        marked_name,
        *(f"Test Artist - Test Song (Tester) [Insane (Split) {i}].osu" for i in (1, 2, 3)),
    }


def test_split_not_marked(song_folder: Path) -> None:
    with pytest.raises(SystemExit) as excinfo:
        run(song_folder / SAMPLE_FILENAME, "--split")
    assert excinfo.value.code == 1
    assert osu_files(song_folder) == {SAMPLE_FILENAME}


def test_clipboard(song_folder: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(cli.pyperclip, "paste", lambda: f'"{song_folder / SAMPLE_FILENAME}"\n')
    run("--no-lns")
    assert "Test Artist - Test Song (Tester) [Insane No LNs].osu" in osu_files(song_folder)


def test_empty_clipboard(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(cli.pyperclip, "paste", lambda: "")
    with pytest.raises(SystemExit):
        run("--info")


def test_missing_input(tmp_path: Path) -> None:
    with pytest.raises(SystemExit):
        run(tmp_path / "missing.osu", "--info")


def test_not_osu(song_folder: Path) -> None:
    with pytest.raises(SystemExit):
        run(song_folder / "bg.png", "--info")


def test_info(song_folder: Path, caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.INFO)
    run(song_folder / SAMPLE_FILENAME, "--info")
    assert "Format version: 14" in caplog.text
    assert "Main BPM: 150" in caplog.text
    assert "Max combo: 5" in caplog.text
    assert osu_files(song_folder) == {SAMPLE_FILENAME}


def test_invalid_map(song_folder: Path) -> None:
    broken = import_file(song_folder / SAMPLE_FILENAME)
    broken.lines.append("256,192,500,64,0,0:0:0:0:")
    broken.filename = "broken.osu"
    export_file(broken)
    with pytest.raises(SystemExit):
        run(song_folder / "broken.osu", "--no-lns")
    assert not (song_folder / "broken No LNs.osu").exists()
