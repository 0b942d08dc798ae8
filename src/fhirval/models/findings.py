"""Finding, navigation and report models shared by every pipeline stage."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class Severity(str, Enum):
    """Finding severity."""
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


class FindingSource(str, Enum):
    """Stage family that produced a finding."""
    STRUCTURAL = "structural"
    BUSINESS = "business"
    LINT = "lint"
    QUALITY_ADVISORY = "quality-advisory"
    REFERENCE = "reference"
    INTERNAL = "internal"


class Confidence(str, Enum):
    """How sure an explanation is about the underlying problem."""
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


@dataclass
class NavigationInfo:
    """Concrete location of a finding inside one document instance."""
    pointer: str
    breadcrumbs: list[str] = field(default_factory=list)
    exists: bool = True
    missing_ancestors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "pointer": self.pointer,
            "breadcrumbs": list(self.breadcrumbs),
            "exists": self.exists,
            "missingAncestors": list(self.missing_ancestors),
        }


@dataclass
class Explanation:
    """Deterministic what/how text attached to a finding."""
    what: str
    how: str | None = None
    confidence: Confidence = Confidence.MEDIUM

    def to_dict(self) -> dict[str, Any]:
        return {"what": self.what, "how": self.how, "confidence": self.confidence.value}


@dataclass
class Finding:
    """A single reported issue, normalized across all sources."""
    source: FindingSource
    severity: Severity
    code: str
    message: str
    resource_type: str | None = None
    path: str | None = None
    pointer: str | None = None
    details: dict[str, Any] = field(default_factory=dict)
    navigation: NavigationInfo | None = None
    explanation: Explanation | None = None
    entry_index: int | None = None

    def __str__(self) -> str:
        location = ""
        if self.resource_type:
            location += f" in {self.resource_type}"
        if self.path:
            location += f" at {self.path}"
        return f"[{self.severity.value.upper()}] {self.code}: {self.message}{location}"

    def to_dict(self) -> dict[str, Any]:
        """Convert to the wire shape used in reports."""
        data: dict[str, Any] = {
            "source": self.source.value,
            "severity": self.severity.value,
            "errorCode": self.code,
            "message": self.message,
            "details": dict(self.details),
        }
        if self.resource_type is not None:
            data["resourceType"] = self.resource_type
        if self.path is not None:
            data["path"] = self.path
        if self.pointer is not None:
            data["jsonPointer"] = self.pointer
        if self.navigation is not None:
            data["navigation"] = self.navigation.to_dict()
        if self.explanation is not None:
            data["explanation"] = self.explanation.to_dict()
        return data


@dataclass
class Diagnostic:
    """Why a check could not complete normally."""
    check: str
    message: str
    error_type: str | None = None


@dataclass
class CheckResult:
    """Outcome of one check: the findings it produced, plus a diagnostic if it faulted."""
    findings: list[Finding] = field(default_factory=list)
    diagnostic: Diagnostic | None = None

    @property
    def ok(self) -> bool:
        return self.diagnostic is None

    @classmethod
    def of(cls, findings: list[Finding]) -> "CheckResult":
        return cls(findings=list(findings))

    @classmethod
    def failed(cls, check: str, error: Exception, findings: list[Finding] | None = None) -> "CheckResult":
        return cls(
            findings=list(findings or []),
            diagnostic=Diagnostic(check=check, message=str(error), error_type=type(error).__name__),
        )


@dataclass
class ReportSummary:
    """Counts computed once from the final finding list."""
    total_errors: int = 0
    error_count: int = 0
    warning_count: int = 0
    info_count: int = 0
    counts_by_source: dict[str, int] = field(default_factory=dict)

    @classmethod
    def from_findings(cls, findings: list[Finding]) -> "ReportSummary":
        by_source: dict[str, int] = {}
        for finding in findings:
            by_source[finding.source.value] = by_source.get(finding.source.value, 0) + 1
        return cls(
            total_errors=len(findings),
            error_count=sum(1 for f in findings if f.severity == Severity.ERROR),
            warning_count=sum(1 for f in findings if f.severity == Severity.WARNING),
            info_count=sum(1 for f in findings if f.severity == Severity.INFO),
            counts_by_source=by_source,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalErrors": self.total_errors,
            "errorCount": self.error_count,
            "warningCount": self.warning_count,
            "infoCount": self.info_count,
            "countsBySource": dict(self.counts_by_source),
        }


@dataclass
class ValidationReport:
    """Result of one validation request. Created fresh per request."""
    findings: list[Finding] = field(default_factory=list)
    summary: ReportSummary = field(default_factory=ReportSummary)
    schema_version: str = "4.0.1"
    rules_version: str | None = None
    processing_time_ms: float = 0.0
    suggestions: list[dict[str, Any]] | None = None

    @property
    def exit_code(self) -> int:
        """Exit code for CI: 0 = no errors, 1 = at least one error finding."""
        return 1 if self.summary.error_count else 0

    def add(self, finding: Finding) -> None:
        self.findings.append(finding)

    def extend(self, findings: list[Finding]) -> None:
        self.findings.extend(findings)

    def finalize(self) -> None:
        """Compute summary counts from the final finding list."""
        self.summary = ReportSummary.from_findings(self.findings)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON output."""
        data: dict[str, Any] = {
            "errors": [f.to_dict() for f in self.findings],
            "summary": self.summary.to_dict(),
            "metadata": {
                "schemaVersion": self.schema_version,
                "rulesVersion": self.rules_version,
                "processingTimeMs": round(self.processing_time_ms, 3),
            },
        }
        if self.suggestions is not None:
            data["suggestions"] = list(self.suggestions)
        return data
