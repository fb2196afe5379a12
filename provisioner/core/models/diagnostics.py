"""
Diagnostic report types — pre-flight check results.

A report is an ordered list of check results. It is produced fresh on
every invocation and is informational only: it is never persisted as
authoritative state.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

from provisioner.core.errors import PreflightError

CheckLevel = Literal["pass", "warn", "fail"]

_SEVERITY = {"pass": 0, "warn": 1, "fail": 2}


class Thresholds(BaseModel):
    """Resource thresholds for the pre-flight check.

    Values below ``*_fail`` fail, values at or above ``*_pass`` pass,
    anything in between warns.
    """

    ram_fail_mb: int = 1024
    ram_pass_mb: int = 2048
    disk_fail_gb: int = 5
    disk_pass_gb: int = 10
    cpu_pass_cores: int = 2
    disk_path: str = "/"
    ports: list[int] = Field(default_factory=lambda: [80, 443, 8080])
    required_software: list[str] = Field(default_factory=lambda: ["curl", "wget", "git"])
    optional_software: list[str] = Field(default_factory=lambda: ["docker", "nginx", "certbot", "jq"])
    probe_timeout: int = 5


@dataclass(frozen=True)
class CheckResult:
    """Outcome of one diagnostic check."""

    name: str
    level: CheckLevel
    message: str
    hint: str = ""

    def to_dict(self) -> dict[str, Any]:
        data = {"name": self.name, "level": self.level, "message": self.message}
        if self.hint:
            data["hint"] = self.hint
        return data


@dataclass
class DiagnosticReport:
    """Ordered collection of check results."""

    results: list[CheckResult] = field(default_factory=list)
    timestamp: str = ""

    def __post_init__(self) -> None:
        if not self.timestamp:
            self.timestamp = datetime.now(UTC).isoformat()

    def add(self, name: str, level: CheckLevel, message: str, hint: str = "") -> CheckResult:
        result = CheckResult(name=name, level=level, message=message, hint=hint)
        self.results.append(result)
        return result

    @property
    def level(self) -> CheckLevel:
        """Worst level across all results."""
        worst: CheckLevel = "pass"
        for r in self.results:
            if _SEVERITY[r.level] > _SEVERITY[worst]:
                worst = r.level
        return worst

    @property
    def failures(self) -> list[CheckResult]:
        return [r for r in self.results if r.level == "fail"]

    @property
    def warnings(self) -> list[CheckResult]:
        return [r for r in self.results if r.level == "warn"]

    @property
    def passed(self) -> list[CheckResult]:
        return [r for r in self.results if r.level == "pass"]

    @property
    def recommendations(self) -> list[str]:
        """What to do about each warning or failure, worst first, no repeats."""
        ordered = sorted(self.results, key=lambda r: -_SEVERITY[r.level])
        seen: list[str] = []
        for r in ordered:
            if r.level != "pass" and r.hint and r.hint not in seen:
                seen.append(r.hint)
        return seen

    def get(self, name: str) -> CheckResult | None:
        for r in self.results:
            if r.name == name:
                return r
        return None

    def raise_for_failures(self) -> None:
        """Raise ``PreflightError`` if any check failed."""
        if self.failures:
            names = [r.name for r in self.failures]
            raise PreflightError(
                f"Pre-flight check failed: {', '.join(names)}",
                failures=[f"{r.name}: {r.message}" for r in self.failures],
            )

    def to_dict(self) -> dict[str, Any]:
        return {
            "level": self.level,
            "timestamp": self.timestamp,
            "summary": {
                "pass": len(self.passed),
                "warn": len(self.warnings),
                "fail": len(self.failures),
            },
            "results": [r.to_dict() for r in self.results],
            "recommendations": self.recommendations,
        }
