"""Drive line coverage across a test run and merge it per decoder module."""

from __future__ import annotations

from dataclasses import dataclass
import importlib
import logging
from pathlib import Path
import sys
from typing import TextIO

from pdconform.config.schema import CoverageConfig, DecoderSpec
from pdconform.errors import (
    CoverageQueryError,
    CoverageReportError,
    CoverageStartError,
    RecoverableError,
)
from pdconform.linecov.model import AggregateCoverage, ModuleCoverage
from pdconform.observability.logging import get_logger, log_event
from pdconform.pipeline.interfaces import CoverageTool, CoverageToolFactory, ModuleLocator


_LOGGER = get_logger("pdconform.coverage")


def include_patterns(pipeline: list[DecoderSpec]) -> list[str]:
    """One inclusion pattern per decoder module, in pipeline order."""

    patterns: list[str] = []
    for spec in pipeline:
        pattern = f"*/{spec.decoder_id}/*.py"
        if pattern not in patterns:
            patterns.append(pattern)
    return patterns


def package_dirs(scope: str) -> list[Path]:
    """Installation directories of an importable package."""

    try:
        module = importlib.import_module(scope)
    except ImportError as exc:
        raise CoverageQueryError(f"Cannot import module '{scope}': {exc}") from exc
    return [Path(entry) for entry in getattr(module, "__path__", [])]


def module_sources(directories: list[Path]) -> list[Path]:
    """Every `*.py` file directly inside the given directories, sorted."""

    sources: list[Path] = []
    for directory in directories:
        if not directory.is_dir():
            raise CoverageQueryError(f"Invalid module path '{directory}'")
        sources.extend(sorted(directory.glob("*.py")))
    return sources


def _report_recoverable(error: RecoverableError) -> None:
    log_event(_LOGGER, str(error), level=logging.ERROR)


@dataclass(slots=True)
class CoverageAggregator:
    """Start, stop and report phases around one decode run."""

    pipeline: list[DecoderSpec]
    config: CoverageConfig
    tool_factory: CoverageToolFactory
    locate: ModuleLocator = package_dirs
    out: TextIO | None = None
    tool: CoverageTool | None = None

    @property
    def active(self) -> bool:
        return self.tool is not None

    def start(self) -> bool:
        """Start measuring; failure degrades to a run without coverage."""

        patterns = include_patterns(self.pipeline)
        log_event(_LOGGER, "coverage_starting", patterns=",".join(patterns))
        try:
            tool = self.tool_factory(patterns)
            tool.start()
        except CoverageStartError as exc:
            _report_recoverable(exc)
            return False
        except Exception as exc:
            _report_recoverable(CoverageStartError(f"Failed to start coverage: {exc}"))
            return False
        self.tool = tool
        return True

    def module_coverage(self, scope: str) -> ModuleCoverage:
        """Merge every file of one module into a ModuleCoverage."""

        if self.tool is None:
            raise CoverageQueryError("Coverage is not active")
        try:
            directories = self.locate(scope)
        except CoverageQueryError:
            raise
        except Exception as exc:
            raise CoverageQueryError(f"Cannot locate module '{scope}': {exc}") from exc

        result = ModuleCoverage(scope=scope)
        for path in module_sources(directories):
            try:
                total, missed = self.tool.analyze(path)
            except CoverageQueryError:
                raise
            except Exception as exc:
                raise CoverageQueryError(
                    f"Invalid result from coverage of '{path}': {exc}"
                ) from exc
            result.add_file(path.name, total, missed)
            log_event(
                _LOGGER,
                f"Coverage for {scope}/{path.name}: {total} lines, {len(missed)} missed.",
            )
        return result

    def _print(self, line: str) -> None:
        print(line, file=self.out if self.out is not None else sys.stdout)

    def report(self) -> AggregateCoverage | None:
        """Print per-module and all-scope summary lines, then write the text report."""

        if self.tool is None:
            return None

        aggregate = AggregateCoverage()
        for spec in self.pipeline:
            try:
                module = self.module_coverage(spec.decoder_id)
            except CoverageQueryError as exc:
                _report_recoverable(exc)
                continue
            self._print(module.summary_line())
            aggregate.add(module)
            log_event(
                _LOGGER,
                "module_coverage",
                scope=module.scope,
                lines=module.total_lines,
                missed=module.missed,
            )

        if aggregate.modules:
            self._print(aggregate.summary_line(self.config.summary))
        log_event(
            _LOGGER,
            "coverage_union",
            missed_lines=",".join(aggregate.missed_lines),
        )

        if self.config.report_path is not None:
            try:
                self.tool.write_report(Path(self.config.report_path))
            except CoverageReportError as exc:
                _report_recoverable(exc)
            except Exception as exc:
                _report_recoverable(CoverageReportError(f"Failed to make coverage report: {exc}"))
            else:
                log_event(_LOGGER, "coverage_report_written", path=self.config.report_path)
        return aggregate

    def finish(self) -> AggregateCoverage | None:
        """Stop measuring and report; errors never propagate."""

        if self.tool is None:
            return None
        log_event(_LOGGER, "coverage_stopping")
        try:
            self.tool.stop()
        except Exception as exc:
            _report_recoverable(CoverageQueryError(f"Failed to stop coverage: {exc}"))
            self.tool = None
            return None
        return self.report()
