"""Per-module and pipeline-wide line coverage results."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Literal


SummaryMode = Literal["mean", "sum"]


def percentage(total: int, missed: int) -> float | None:
    """Covered share in percent; undefined when there are no executable lines."""

    if total <= 0:
        return None
    return 100 - (missed / total * 100)


def format_percentage(value: float | None) -> str:
    if value is None:
        return "n/a"
    return f"{value:.0f}%"


@dataclass(slots=True)
class ModuleCoverage:
    """Coverage of every source file belonging to one decoder module."""

    scope: str
    total_lines: int = 0
    # Ordered set of "<scope>/<file>:<line>" identifiers.
    _missed: dict[str, None] = field(default_factory=dict)

    @property
    def missed_lines(self) -> list[str]:
        return list(self._missed)

    @property
    def missed(self) -> int:
        return len(self._missed)

    @property
    def coverage(self) -> float | None:
        return percentage(self.total_lines, self.missed)

    def add_file(self, file_name: str, total_lines: int, missed_numbers: Iterable[int]) -> None:
        self.total_lines += int(total_lines)
        for number in missed_numbers:
            self._missed[f"{self.scope}/{file_name}:{int(number)}"] = None

    def summary_line(self) -> str:
        return (
            f"coverage: scope={self.scope} coverage={format_percentage(self.coverage)} "
            f"lines={self.total_lines} missed={self.missed} "
            f"missed_lines={','.join(self._missed)}"
        )


@dataclass(slots=True)
class AggregateCoverage:
    """Coverage accumulated across every module of the pipeline."""

    modules: list[ModuleCoverage] = field(default_factory=list)
    _missed: dict[str, None] = field(default_factory=dict)

    @property
    def missed_lines(self) -> list[str]:
        """De-duplicated union of every module's missed lines, first-seen order."""

        return list(self._missed)

    def add(self, module: ModuleCoverage) -> None:
        self.modules.append(module)
        for line in module.missed_lines:
            self._missed.setdefault(line, None)

    def mean_counts(self) -> tuple[int, int]:
        """Per-module average of lines and missed lines (integer division)."""

        if not self.modules:
            return 0, 0
        count = len(self.modules)
        lines = sum(item.total_lines for item in self.modules) // count
        missed = sum(item.missed for item in self.modules) // count
        return lines, missed

    def sum_counts(self) -> tuple[int, int]:
        """Total lines over distinct modules and the size of the missed-line union."""

        seen: dict[str, int] = {}
        for item in self.modules:
            seen.setdefault(item.scope, item.total_lines)
        return sum(seen.values()), len(self._missed)

    def counts(self, mode: SummaryMode = "mean") -> tuple[int, int]:
        if mode == "sum":
            return self.sum_counts()
        return self.mean_counts()

    def summary_line(self, mode: SummaryMode = "mean") -> str:
        lines, missed = self.counts(mode)
        return (
            f"coverage: scope=all coverage={format_percentage(percentage(lines, missed))} "
            f"lines={lines} missed={missed}"
        )
