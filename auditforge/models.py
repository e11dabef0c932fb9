"""
Common data model for AuditForge findings and reports.

Every analyzer speaks a different dialect; the normalizing constructors here
turn those outputs into one vulnerability schema so the aggregation step can
assume well-formed data.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional


SEVERITY_ORDER: Dict[str, int] = {
    'critical': 0,
    'high': 1,
    'medium': 2,
    'low': 3,
    'info': 4,
}

SEVERITY_PENALTIES: Dict[str, float] = {
    'critical': 20,
    'high': 10,
    'medium': 5,
    'low': 2,
    'info': 0.5,
}

CATEGORIES = ('security', 'depin', 'nodeops', 'gas', 'quality')

RISK_LEVELS = ('Critical', 'High', 'Medium', 'Low')

LANGUAGES = ('solidity', 'rust')

DEFAULT_SEVERITY = 'medium'
DEFAULT_CATEGORY = 'security'


def normalize_severity(value: Any) -> str:
    """Clamp an arbitrary severity value into the five-value scale."""
    normalized = str(value or '').strip().lower()
    return normalized if normalized in SEVERITY_ORDER else DEFAULT_SEVERITY


def severity_rank(severity: str) -> int:
    """Ordinal rank of a severity, lower is more severe."""
    return SEVERITY_ORDER.get(severity, SEVERITY_ORDER[DEFAULT_SEVERITY])


def _coerce_line(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        line = int(float(value))
    except (TypeError, ValueError):
        return None
    return line if line > 0 else None


def _coerce_text(value: Any, default: str) -> str:
    if value is None:
        return default
    text = str(value).strip()
    return text or default


@dataclass(frozen=True)
class Vulnerability:
    """A single normalized finding."""
    title: str
    severity: str
    category: str
    description: str
    remediation: str
    line: Optional[int] = None

    @property
    def rank(self) -> int:
        return severity_rank(self.severity)

    @property
    def dedup_key(self):
        return (self.title, self.line or 0)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], default_category: str = DEFAULT_CATEGORY) -> 'Vulnerability':
        """Build a finding from loosely-typed analyzer or LLM output.

        Severity is clamped into the enumerated scale (``medium`` when invalid),
        string fields are coerced with ``str()`` and ``line`` becomes a
        positive int or ``None``.
        """
        category = _coerce_text(data.get('category'), default_category).lower()
        return cls(
            title=_coerce_text(data.get('title'), 'Unknown Vulnerability'),
            severity=normalize_severity(data.get('severity')),
            category=category,
            description=_coerce_text(data.get('description'), 'No description provided'),
            remediation=_coerce_text(data.get('remediation'), 'Review and fix this issue'),
            line=_coerce_line(data.get('line')),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'title': self.title,
            'severity': self.severity,
            'category': self.category,
            'description': self.description,
            'line': self.line,
            'remediation': self.remediation,
        }


def coerce_vulnerabilities(entries: Any) -> List[Vulnerability]:
    """Normalize a list of findings, silently dropping malformed entries."""
    if not isinstance(entries, (list, tuple)):
        return []
    vulnerabilities = []
    for entry in entries:
        if isinstance(entry, Vulnerability):
            vulnerabilities.append(entry)
        elif isinstance(entry, Mapping):
            vulnerabilities.append(Vulnerability.from_dict(entry))
    return vulnerabilities


@dataclass
class AnalyzerResult:
    """Output of one analyzer, tagged with the analyzer's name.

    Only ``vulnerabilities`` is common to all analyzers; every other field is
    an optional extra that a given analyzer may or may not fill in.
    """
    analyzer: str
    vulnerabilities: List[Vulnerability] = field(default_factory=list)
    gas_optimizations: List[Dict[str, Any]] = field(default_factory=list)
    complexity: Optional[str] = None
    documentation: Optional[str] = None
    insights: List[Dict[str, Any]] = field(default_factory=list)
    node_ops_recommendations: List[Dict[str, Any]] = field(default_factory=list)
    depin_ready: Optional[bool] = None
    node_ops_compatible: Optional[bool] = None
    error: Optional[str] = None
    raw_response: Optional[str] = None
    model: Optional[str] = None

    @classmethod
    def empty(cls, analyzer: str) -> 'AnalyzerResult':
        return cls(analyzer=analyzer)

    @classmethod
    def from_raw(cls, analyzer: str, raw: Any) -> 'AnalyzerResult':
        """Normalize whatever an analyzer returned into an ``AnalyzerResult``."""
        if isinstance(raw, cls):
            raw.vulnerabilities = coerce_vulnerabilities(raw.vulnerabilities)
            return raw
        if not isinstance(raw, Mapping):
            raise TypeError(f"{analyzer} analyzer returned {type(raw).__name__}, expected a result mapping")

        def _list(key: str, alias: Optional[str] = None) -> List[Dict[str, Any]]:
            value = raw.get(key)
            if value is None and alias:
                value = raw.get(alias)
            return [item for item in value if isinstance(item, Mapping)] if isinstance(value, list) else []

        def _flag(key: str, alias: str) -> Optional[bool]:
            value = raw.get(key, raw.get(alias))
            return bool(value) if value is not None else None

        return cls(
            analyzer=analyzer,
            vulnerabilities=coerce_vulnerabilities(raw.get('vulnerabilities')),
            gas_optimizations=_list('gas_optimizations', 'gasOptimizations'),
            complexity=raw.get('complexity'),
            documentation=raw.get('documentation'),
            insights=_list('insights'),
            node_ops_recommendations=_list('node_ops_recommendations', 'nodeOpsRecommendations'),
            depin_ready=_flag('depin_ready', 'depinReady'),
            node_ops_compatible=_flag('node_ops_compatible', 'nodeOpsCompatible'),
            error=raw.get('error'),
            raw_response=raw.get('raw_response', raw.get('rawResponse')),
            model=raw.get('model'),
        )


@dataclass
class AnalyzerOutcome:
    """Settled outcome of one analyzer: either a result or an error reason."""
    name: str
    result: Optional[AnalyzerResult] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.result is not None

    def result_or_empty(self) -> AnalyzerResult:
        return self.result if self.ok else AnalyzerResult.empty(self.name)


@dataclass(frozen=True)
class AuditSummary:
    """Aggregate counts and recommendation for an audit."""
    risk_level: str
    score: int
    total_issues: int
    critical_issues: int
    high_issues: int
    medium_issues: int
    low_issues: int
    info_issues: int
    recommendation: str
    depin_ready: bool = True
    node_ops_compatible: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            'riskLevel': self.risk_level,
            'score': self.score,
            'totalIssues': self.total_issues,
            'criticalIssues': self.critical_issues,
            'highIssues': self.high_issues,
            'mediumIssues': self.medium_issues,
            'lowIssues': self.low_issues,
            'infoIssues': self.info_issues,
            'recommendation': self.recommendation,
            'depinReady': self.depin_ready,
            'nodeOpsCompatible': self.node_ops_compatible,
        }


def empty_categories() -> Dict[str, List[Vulnerability]]:
    return {name: [] for name in CATEGORIES}


@dataclass(frozen=True)
class AuditReport:
    """Final, immutable output of one audit invocation."""
    score: int
    risk_level: str
    vulnerabilities: List[Vulnerability]
    categories: Dict[str, List[Vulnerability]]
    summary: AuditSummary
    depin_insights: List[Dict[str, Any]] = field(default_factory=list)
    node_ops_recommendations: List[Dict[str, Any]] = field(default_factory=list)
    gas_optimizations: List[Dict[str, Any]] = field(default_factory=list)
    code_quality: Dict[str, str] = field(default_factory=dict)
    analysis_errors: List[str] = field(default_factory=list)
    ai_error: Optional[str] = None

    @classmethod
    def failure(cls, message: str) -> 'AuditReport':
        """Minimal, well-formed report used when the audit itself blew up."""
        summary = AuditSummary(
            risk_level='Critical',
            score=0,
            total_issues=0,
            critical_issues=0,
            high_issues=0,
            medium_issues=0,
            low_issues=0,
            info_issues=0,
            recommendation='Audit could not be completed. Review the analysis errors and retry.',
            depin_ready=False,
            node_ops_compatible=False,
        )
        return cls(
            score=0,
            risk_level='Critical',
            vulnerabilities=[],
            categories=empty_categories(),
            summary=summary,
            code_quality={'complexity': 'Unknown', 'testCoverage': 'N/A', 'documentation': 'Unknown'},
            analysis_errors=[message],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'score': self.score,
            'riskLevel': self.risk_level,
            'summary': self.summary.to_dict(),
            'vulnerabilities': [v.to_dict() for v in self.vulnerabilities],
            'categories': {
                name: [v.to_dict() for v in vulns] for name, vulns in self.categories.items()
            },
            'depinInsights': list(self.depin_insights),
            'nodeOpsRecommendations': list(self.node_ops_recommendations),
            'gasOptimizations': list(self.gas_optimizations),
            'codeQuality': dict(self.code_quality),
            'analysisErrors': list(self.analysis_errors),
            'aiError': self.ai_error,
        }
