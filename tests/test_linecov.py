import io
from pathlib import Path

import pytest

from conftest import make_case
from pdconform.capture.srzip import SrZipReplay
from pdconform.config.schema import (
    ChannelBinding,
    CoverageConfig,
    DecoderSpec,
    OutputKind,
    OutputSelector,
)
from pdconform.engine.session import ReferenceEngine
from pdconform.errors import CoverageQueryError, CoverageReportError
from pdconform.linecov.aggregator import CoverageAggregator, include_patterns
from pdconform.linecov.model import AggregateCoverage, ModuleCoverage, percentage
from pdconform.linecov.tool import coverage_py_factory
from pdconform.pipeline.executor import execute


class _FakeTool:
    """Serves canned (lines, missed) results keyed by module directory name."""

    def __init__(self, results, fail_report=False):
        self.results = results
        self.fail_report = fail_report
        self.events = []
        self.include = None

    def start(self):
        self.events.append("start")

    def stop(self):
        self.events.append("stop")

    def analyze(self, path):
        return self.results[path.parent.name]

    def write_report(self, destination):
        if self.fail_report:
            raise CoverageReportError("Failed to write coverage report: read-only")
        destination.write_text("report\n", "utf-8")
        self.events.append("report")


def _module_tree(root: Path, *names: str) -> dict[str, list[Path]]:
    dirs = {}
    for name in names:
        directory = root / name
        directory.mkdir()
        (directory / "pd.py").write_text("pass\n", "utf-8")
        dirs[name] = [directory]
    return dirs


def _aggregator(tmp_path, tool, pipeline, summary="mean", locate=None):
    dirs = _module_tree(tmp_path, *{spec.decoder_id for spec in pipeline})

    def factory(patterns):
        tool.include = patterns
        return tool

    out = io.StringIO()
    aggregator = CoverageAggregator(
        pipeline=pipeline,
        config=CoverageConfig(report_path=str(tmp_path / "cov.txt"), summary=summary),
        tool_factory=factory,
        locate=locate or dirs.__getitem__,
        out=out,
    )
    return aggregator, out


def test_percentage_is_undefined_without_lines():
    assert percentage(0, 0) is None
    assert percentage(40, 10) == 75


def test_module_and_aggregate_missed_lines():
    first = ModuleCoverage(scope="uart")
    first.add_file("pd.py", 20, [3, 7])
    first.add_file("lists.py", 5, [])
    second = ModuleCoverage(scope="uart")
    second.add_file("pd.py", 20, [7, 9])

    aggregate = AggregateCoverage()
    aggregate.add(first)
    aggregate.add(second)

    assert first.total_lines == 25
    assert aggregate.missed_lines == ["uart/pd.py:3", "uart/pd.py:7", "uart/pd.py:9"]
    assert aggregate.sum_counts() == (20 + 5, 3)


def test_include_patterns_are_unique_per_module():
    pipeline = [DecoderSpec("uart"), DecoderSpec("modbus"), DecoderSpec("uart")]

    assert include_patterns(pipeline) == ["*/uart/*.py", "*/modbus/*.py"]


def test_mean_summary_over_two_modules(tmp_path: Path):
    tool = _FakeTool({"A": (100, []), "B": (50, list(range(1, 11)))})
    aggregator, out = _aggregator(tmp_path, tool, [DecoderSpec("A"), DecoderSpec("B")])

    assert aggregator.start()
    aggregate = aggregator.finish()

    lines = out.getvalue().splitlines()
    assert lines[0] == "coverage: scope=A coverage=100% lines=100 missed=0 missed_lines="
    assert lines[1].startswith("coverage: scope=B coverage=80% lines=50 missed=10 missed_lines=B/pd.py:1,")
    assert lines[2] == "coverage: scope=all coverage=93% lines=75 missed=5"
    assert tool.include == ["*/A/*.py", "*/B/*.py"]
    assert tool.events == ["start", "stop", "report"]
    assert len(aggregate.missed_lines) == 10
    assert (tmp_path / "cov.txt").read_text("utf-8") == "report\n"


def test_sum_summary_uses_union(tmp_path: Path):
    tool = _FakeTool({"A": (100, []), "B": (50, list(range(1, 11)))})
    aggregator, out = _aggregator(tmp_path, tool, [DecoderSpec("A"), DecoderSpec("B")], summary="sum")

    aggregator.start()
    aggregator.finish()

    assert out.getvalue().splitlines()[-1] == "coverage: scope=all coverage=93% lines=150 missed=10"


def test_module_without_lines_reports_na(tmp_path: Path):
    tool = _FakeTool({"A": (0, [])})
    aggregator, out = _aggregator(tmp_path, tool, [DecoderSpec("A")])

    aggregator.start()
    aggregator.finish()

    assert out.getvalue().splitlines() == [
        "coverage: scope=A coverage=n/a lines=0 missed=0 missed_lines=",
        "coverage: scope=all coverage=n/a lines=0 missed=0",
    ]


def test_start_failure_degrades_to_no_coverage(tmp_path: Path, caplog):
    def factory(patterns):
        raise RuntimeError("tracer busy")

    aggregator = CoverageAggregator(
        pipeline=[DecoderSpec("A")],
        config=CoverageConfig(report_path=str(tmp_path / "cov.txt")),
        tool_factory=factory,
        out=io.StringIO(),
    )

    assert aggregator.start() is False
    assert aggregator.finish() is None
    assert "Failed to start coverage: tracer busy" in caplog.text
    assert not (tmp_path / "cov.txt").exists()


def test_failed_module_query_is_skipped(tmp_path: Path, caplog):
    tool = _FakeTool({"A": (10, [2])})
    dirs = _module_tree(tmp_path, "A")

    def locate(scope):
        if scope not in dirs:
            raise CoverageQueryError(f"Cannot import module '{scope}'")
        return dirs[scope]

    aggregator = CoverageAggregator(
        pipeline=[DecoderSpec("A"), DecoderSpec("B")],
        config=CoverageConfig(report_path=str(tmp_path / "cov.txt")),
        tool_factory=lambda patterns: tool,
        locate=locate,
        out=io.StringIO(),
    )
    aggregator.start()
    aggregate = aggregator.finish()

    assert [module.scope for module in aggregate.modules] == ["A"]
    assert aggregator.out.getvalue().splitlines()[-1] == "coverage: scope=all coverage=90% lines=10 missed=1"
    assert "Cannot import module 'B'" in caplog.text


def test_report_failure_is_logged(tmp_path: Path, caplog):
    tool = _FakeTool({"A": (10, [])}, fail_report=True)
    aggregator, _ = _aggregator(tmp_path, tool, [DecoderSpec("A")])

    aggregator.start()
    aggregate = aggregator.finish()

    assert aggregate is not None
    assert "read-only" in caplog.text


COVERED_DECODER = '''\
from pdconform.engine.decoder import OUTPUT_ANN
from pdconform.engine.decoder import Decoder as BaseDecoder


class Decoder(BaseDecoder):
    id = "pdc_covpd"
    name = "Coverage probe"
    channels = ({"id": "data", "name": "D0", "desc": "Data"},)
    annotations = (("level", "Level"),)

    def start(self):
        self.out_ann = self.register(OUTPUT_ANN)

    def decode(self, ss, es, data):
        for offset, row in enumerate(data):
            if int(row[0]) == 7:
                self.put(ss, es, self.out_ann, [0, ["never"]])
            self.put(ss + offset, ss + offset + 1, self.out_ann, [0, [str(int(row[0]))]])
'''


def test_coverage_py_measures_decoder_package(tmp_path: Path, capture):
    decoders = tmp_path / "decoders"
    (decoders / "pdc_covpd").mkdir(parents=True)
    (decoders / "pdc_covpd" / "__init__.py").write_text(COVERED_DECODER, "utf-8")
    never_line = COVERED_DECODER.splitlines().index(
        '                self.put(ss, es, self.out_ann, [0, ["never"]])'
    ) + 1

    engine = ReferenceEngine.from_directory(decoders)
    case = make_case(
        capture(bytes([1, 0])),
        pipeline=[DecoderSpec("pdc_covpd", channels=(ChannelBinding("data", 0),))],
        output=OutputSelector("pdc_covpd", OutputKind.ANNOTATION),
        coverage=CoverageConfig(report_path=str(tmp_path / "report" / "cov.txt")),
    )
    out = io.StringIO()

    result = execute(
        case,
        engine=engine,
        replay=SrZipReplay(),
        coverage_factory=coverage_py_factory,
        locate=lambda scope: engine.load_decoder(scope).source_dirs,
        stdout=out,
    )

    assert result.succeeded
    lines = out.getvalue().splitlines()
    assert lines[:2] == ['0-1 pdc_covpd: level: "1"', '1-2 pdc_covpd: level: "0"']
    module_line = lines[2]
    assert module_line.startswith("coverage: scope=pdc_covpd coverage=")
    assert module_line.endswith(f"missed=1 missed_lines=pdc_covpd/__init__.py:{never_line}")
    assert lines[3].startswith("coverage: scope=all coverage=")
    assert "__init__.py" in (tmp_path / "report" / "cov.txt").read_text("utf-8")
    assert result.coverage.missed_lines == [f"pdc_covpd/__init__.py:{never_line}"]



def _uart():
    module = ModuleCoverage(scope="uart")
    module.add_file("pd.py", 40, [3, 7])
    return module


def _spi():
    module = ModuleCoverage(scope="spi")
    module.add_file("pd.py", 20, [5])
    module.add_file("lists.py", 4, [1])
    return module


@pytest.mark.parametrize(
    "order",
    [(_uart, _spi), (_spi, _uart)],
    ids=["uart-first", "spi-first"],
)
def test_aggregation_does_not_depend_on_module_order(order):
    aggregate = AggregateCoverage()
    for make in order:
        aggregate.add(make())

    assert set(aggregate.missed_lines) == {
        "uart/pd.py:3",
        "uart/pd.py:7",
        "spi/pd.py:5",
        "spi/lists.py:1",
    }
    assert aggregate.mean_counts() == (32, 2)
    assert aggregate.sum_counts() == (64, 4)


def test_aggregating_a_module_twice_keeps_the_missed_set():
    once = AggregateCoverage()
    once.add(_uart())
    twice = AggregateCoverage()
    twice.add(_uart())
    twice.add(_uart())

    assert set(twice.missed_lines) == set(once.missed_lines)
    assert twice.mean_counts() == once.mean_counts()
    assert twice.sum_counts() == once.sum_counts()
