import io
import json
from pathlib import Path

import pytest

from conftest import DECODERS_DIR, EIGHT_SAMPLES
from pdconform.cli import app, commands_decoders, commands_run


def _run_args(capture_path: Path, *extra: str) -> list[str]:
    return [
        "run",
        "--pd", "bits:data=0", "nibble",
        "--output", "nibble:binary:value",
        "--input", str(capture_path),
        "--decoders-dir", str(DECODERS_DIR),
        *extra,
    ]


def test_run_command_writes_selected_output(capture):
    out = io.StringIO()
    command = commands_run.RunCommand(
        pd=("bits:data=0",),
        output="bits:annotation",
        input=str(capture()),
        decoders_dir=DECODERS_DIR,
    )

    assert commands_run.execute(command, stdout=out) == 0
    assert len(out.getvalue().splitlines()) == len(EIGHT_SAMPLES)


def test_run_command_reports_configuration_errors(capture, capsys):
    command = commands_run.RunCommand(
        pd=("bits:data=0",),
        output="bits:waveform",
        input=str(capture()),
        decoders_dir=DECODERS_DIR,
    )

    assert commands_run.execute(command) == 1
    assert "Error: Unknown output type 'waveform'" in capsys.readouterr().err


def test_debug_logging_goes_to_stderr(capture, capsys):
    command = commands_run.RunCommand(
        pd=("bits:data=0",),
        output="bits:annotation",
        input=str(capture()),
        decoders_dir=DECODERS_DIR,
        debug=True,
    )

    assert commands_run.execute(command) == 0
    streams = capsys.readouterr()
    assert "DBG: pdconform.feed: received_header samplerate=1000000" in streams.err
    assert "DBG:" not in streams.out


def test_main_runs_stacked_pipeline(capture, capsys):
    app.main(_run_args(capture()))

    assert capsys.readouterr().out == "0-4 nibble: value: 0d\n4-8 nibble: value: 04\n"


def test_main_exits_non_zero_on_decoder_failure(capture, capsys):
    argv = [
        "run",
        "--pd", "boom:data=0",
        "--output", "boom:exception",
        "--input", str(capture()),
        "--decoders-dir", str(DECODERS_DIR),
    ]

    with pytest.raises(SystemExit) as excinfo:
        app.main(argv)

    assert excinfo.value.code == 1
    assert "Error: Decoder instance boom failed" in capsys.readouterr().err


def test_main_prints_coverage_lines(capture, capsys, tmp_path: Path):
    report = tmp_path / "coverage.txt"

    app.main(_run_args(capture(), "--coverage-report", str(report)))

    out = capsys.readouterr().out.splitlines()
    assert out[:2] == ["0-4 nibble: value: 0d", "4-8 nibble: value: 04"]
    assert out[2].startswith("coverage: scope=bits coverage=")
    assert out[3].startswith("coverage: scope=nibble coverage=")
    assert out[4].startswith("coverage: scope=all coverage=")
    assert report.is_file()


def test_decoders_command_describes_definitions(capsys):
    command = commands_decoders.DecodersCommand(ids=("nibble",), decoders_dir=DECODERS_DIR)

    assert commands_decoders.execute(command) == 0
    described = json.loads(capsys.readouterr().out)
    assert described[0]["id"] == "nibble"
    assert described[0]["inputs"] == ["bits"]
    assert described[0]["binary"] == ["value", "parity"]


def test_decoders_command_lists_search_directory(capsys):
    assert commands_decoders.execute(commands_decoders.DecodersCommand(decoders_dir=DECODERS_DIR)) == 0

    ids = [item["id"] for item in json.loads(capsys.readouterr().out)]
    assert ids == ["bits", "boom", "nibble"]
