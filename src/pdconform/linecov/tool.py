"""coverage.py backend for decoder line coverage."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Sequence

import coverage
from coverage.exceptions import CoverageException

from pdconform.errors import CoverageQueryError, CoverageReportError, CoverageStartError


@dataclass(slots=True)
class CoveragePyTool:
    """Measure lines of files matching `include` patterns; nothing is persisted."""

    include: list[str]
    _cov: coverage.Coverage | None = field(default=None, init=False)

    def start(self) -> None:
        try:
            self._cov = coverage.Coverage(include=self.include, data_file=None)
            self._cov.start()
        except CoverageException as exc:
            self._cov = None
            raise CoverageStartError(f"Failed to start coverage: {exc}") from exc

    def _require(self) -> coverage.Coverage:
        if self._cov is None:
            raise CoverageQueryError("Coverage measurement was never started")
        return self._cov

    def stop(self) -> None:
        self._require().stop()

    def analyze(self, path: Path) -> tuple[int, Sequence[int]]:
        """Return (executable line count, missed line numbers) for one file."""

        try:
            _, statements, _, missing, _ = self._require().analysis2(str(path))
        except CoverageException as exc:
            raise CoverageQueryError(f"Invalid result from coverage of '{path}': {exc}") from exc
        return len(statements), list(missing)

    def write_report(self, destination: Path) -> None:
        cov = self._require()
        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
            with destination.open("w", encoding="utf-8") as handle:
                cov.report(file=handle, show_missing=True)
        except (CoverageException, OSError) as exc:
            raise CoverageReportError(f"Failed to write coverage report: {exc}") from exc


def coverage_py_factory(include: list[str]) -> CoveragePyTool:
    return CoveragePyTool(include=list(include))
