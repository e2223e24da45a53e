"""Run one decoder test case end to end."""

from __future__ import annotations

from contextlib import ExitStack
from dataclasses import dataclass, field
import logging
from pathlib import Path
import sys
from typing import Any, Callable, TextIO

from pdconform.config.loader import validate_test_case
from pdconform.config.schema import DecoderSpec, TestCase
from pdconform.errors import AcquisitionError, ConfigurationError, FatalError, PdConformError
from pdconform.linecov.aggregator import CoverageAggregator, package_dirs
from pdconform.linecov.model import AggregateCoverage
from pdconform.observability.logging import get_logger, log_event
from pdconform.pipeline.dispatch import OutputDispatcher, resolve_class_index
from pdconform.pipeline.feed import AcquisitionFeed
from pdconform.pipeline.interfaces import (
    CaptureReplay,
    ClassCatalog,
    CoverageToolFactory,
    DecodeEngine,
    ModuleLocator,
)
from pdconform.pipeline.stack import build_stack


_LOGGER = get_logger("pdconform.executor")


@dataclass(slots=True)
class RunResult:
    """Outcome of one test case; `succeeded` alone is the verdict."""

    succeeded: bool
    instance_ids: list[str] = field(default_factory=list)
    samples: int = 0
    records_written: int = 0
    write_failures: int = 0
    error: str | None = None
    coverage: AggregateCoverage | None = None

    @property
    def exit_code(self) -> int:
        return 0 if self.succeeded else 1


def expected_instance_ids(pipeline: list[DecoderSpec]) -> list[str]:
    """Instance ids in pipeline order; repeats of a decoder get -2, -3, ... suffixes."""

    ids: list[str] = []
    for spec in pipeline:
        candidate = spec.decoder_id
        suffix = 2
        while candidate in ids:
            candidate = f"{spec.decoder_id}-{suffix}"
            suffix += 1
        ids.append(candidate)
    return ids


def _target_catalog(engine: DecodeEngine, case: TestCase) -> ClassCatalog:
    catalogs = {spec.decoder_id: engine.load_decoder(spec.decoder_id) for spec in case.pipeline}
    ids = expected_instance_ids(case.pipeline)
    if case.output.target not in ids:
        raise ConfigurationError(
            f"Output decoder '{case.output.target}' is not part of the pipeline "
            f"({', '.join(ids)})"
        )
    target_spec = case.pipeline[ids.index(case.output.target)]
    return catalogs[target_spec.decoder_id]


def _open_sink(stack: ExitStack, case: TestCase, stdout: TextIO) -> TextIO:
    if case.output_file is None:
        return stdout
    try:
        handle = open(case.output_file, "w", encoding="utf-8")
    except OSError as exc:
        raise ConfigurationError(f"Unable to open {case.output_file} for writing: {exc}") from exc
    stack.callback(handle.close)
    return handle


def run_testcase(
    case: TestCase,
    *,
    engine: DecodeEngine,
    replay: CaptureReplay,
    stdout: TextIO | None = None,
    render_repr: Callable[[Any], str] = repr,
) -> RunResult:
    """Build the decoder stack, replay the capture through it and dispatch output.

    Every fatal error propagates; resources are released in reverse order of
    acquisition on every path.
    """

    validate_test_case(case)
    # The output class resolves before the sink is opened and the capture loaded.
    catalog = _target_catalog(engine, case)
    class_index = resolve_class_index(catalog, case.output)

    with ExitStack() as stack:
        sink = _open_sink(stack, case, stdout if stdout is not None else sys.stdout)
        dispatcher = OutputDispatcher(
            selector=case.output,
            catalog=catalog,
            sink=sink,
            class_index=class_index,
            render_repr=render_repr,
        )

        try:
            replay_session = replay.load(Path(case.input))
        except PdConformError:
            raise
        except Exception as exc:
            raise AcquisitionError(f"Failed to load capture {case.input}: {exc}") from exc
        stack.callback(replay_session.stop)

        session = engine.new_session()
        stack.callback(session.destroy)

        feed = AcquisitionFeed(session=session)
        replay_session.add_callback(feed)
        dispatcher.attach(session)

        decoders = build_stack(engine, session, case.pipeline)
        if case.output.target not in decoders.instance_ids:
            raise ConfigurationError(
                f"Output decoder '{case.output.target}' was not instantiated"
            )
        log_event(_LOGGER, "stack_built", instances=",".join(decoders.instance_ids))

        replay_session.start()
        replay_session.run()

    log_event(
        _LOGGER,
        "testcase_finished",
        samples=feed.sample_cursor,
        written=dispatcher.written,
        write_failures=dispatcher.write_failures,
    )
    return RunResult(
        succeeded=True,
        instance_ids=decoders.instance_ids,
        samples=feed.sample_cursor,
        records_written=dispatcher.written,
        write_failures=dispatcher.write_failures,
    )


def execute(
    case: TestCase,
    *,
    engine: DecodeEngine,
    replay: CaptureReplay,
    coverage_factory: CoverageToolFactory | None = None,
    locate: ModuleLocator = package_dirs,
    stdout: TextIO | None = None,
) -> RunResult:
    """Run a test case, wrapped in line coverage when a report path is configured."""

    aggregator: CoverageAggregator | None = None
    if case.coverage.enabled and coverage_factory is not None:
        aggregator = CoverageAggregator(
            pipeline=case.pipeline,
            config=case.coverage,
            tool_factory=coverage_factory,
            locate=locate,
            out=stdout,
        )
        aggregator.start()

    coverage: AggregateCoverage | None = None
    try:
        result = run_testcase(case, engine=engine, replay=replay, stdout=stdout)
    except FatalError as exc:
        log_event(_LOGGER, str(exc), level=logging.ERROR)
        result = RunResult(succeeded=False, error=str(exc))
    finally:
        if aggregator is not None:
            coverage = aggregator.finish()

    result.coverage = coverage
    return result
