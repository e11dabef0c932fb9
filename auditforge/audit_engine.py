"""
AuditForge engine: fans a contract out to every analyzer and folds their
findings into one scored report.
"""

import asyncio
import inspect
import logging
import math
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from auditforge.depin_analyzer import DePINAnalyzer
from auditforge.llm_analyzer import LLMAnalyzer
from auditforge.llm_client import LLMClient
from auditforge.models import (
    CATEGORIES,
    SEVERITY_PENALTIES,
    AnalyzerOutcome,
    AnalyzerResult,
    AuditReport,
    AuditSummary,
    Vulnerability,
    coerce_vulnerabilities,
    empty_categories,
)
from auditforge.static_analyzer import StaticAnalyzer

logger = logging.getLogger(__name__)


def deduplicate_vulnerabilities(vulnerabilities: Iterable[Vulnerability]) -> List[Vulnerability]:
    """Collapse findings sharing ``(title, line or 0)``.

    The more severe entry wins; on equal severity the first one seen is kept.
    Survivors keep the position of the first occurrence of their key.
    """
    seen: Dict[Tuple[str, int], Vulnerability] = {}
    for vuln in vulnerabilities:
        key = vuln.dedup_key
        current = seen.get(key)
        if current is None or vuln.rank < current.rank:
            seen[key] = vuln
    return list(seen.values())


def sort_by_severity(vulnerabilities: Iterable[Vulnerability]) -> List[Vulnerability]:
    """Stable sort, critical first."""
    return sorted(vulnerabilities, key=lambda v: v.rank)


def calculate_score(vulnerabilities: Iterable[Vulnerability]) -> int:
    """100 minus the severity penalties, floored at 0 and rounded half-up."""
    score = 100.0
    for vuln in vulnerabilities:
        score -= SEVERITY_PENALTIES.get(vuln.severity, 0)
    return int(math.floor(max(0.0, score) + 0.5))


def categorize_vulnerabilities(vulnerabilities: Iterable[Vulnerability]) -> Dict[str, List[Vulnerability]]:
    categories = empty_categories()
    for vuln in vulnerabilities:
        if vuln.category in categories:
            categories[vuln.category].append(vuln)
    return categories


def risk_level_for(vulnerabilities: Sequence[Vulnerability]) -> str:
    severities = [v.severity for v in vulnerabilities]
    if 'critical' in severities:
        return 'Critical'
    if 'high' in severities:
        return 'High'
    if severities.count('medium') > 2:
        return 'Medium'
    return 'Low'


def recommendation_for(score: int) -> str:
    if score >= 80:
        return 'Contract shows good security practices. Address remaining issues before deployment.'
    if score >= 60:
        return 'Contract has moderate security concerns. Review and fix identified vulnerabilities.'
    return 'Contract has significant security issues. Major refactoring recommended before deployment.'


def generate_summary(vulnerabilities: Sequence[Vulnerability], domain_result: AnalyzerResult, score: int) -> AuditSummary:
    def count(severity: str) -> int:
        return sum(1 for v in vulnerabilities if v.severity == severity)

    return AuditSummary(
        risk_level=risk_level_for(vulnerabilities),
        score=score,
        total_issues=len(vulnerabilities),
        critical_issues=count('critical'),
        high_issues=count('high'),
        medium_issues=count('medium'),
        low_issues=count('low'),
        info_issues=count('info'),
        recommendation=recommendation_for(score),
        depin_ready=domain_result.depin_ready if domain_result.depin_ready is not None else True,
        node_ops_compatible=bool(domain_result.node_ops_compatible),
    )


async def _invoke(analyze, *args) -> Any:
    """Call a sync or async analyzer so that both settle as a coroutine."""
    result = analyze(*args)
    if inspect.isawaitable(result):
        result = await result
    return result


class AuditEngine:
    """Runs the static, AI and DePIN passes and aggregates their findings."""

    def __init__(self, static_analyzer=None, llm_analyzer=None, depin_analyzer=None):
        self.static_analyzer = static_analyzer or StaticAnalyzer()
        self.llm_analyzer = llm_analyzer or LLMAnalyzer()
        self.depin_analyzer = depin_analyzer or DePINAnalyzer()

    @classmethod
    def from_config(cls, config) -> 'AuditEngine':
        """Build an engine whose AI pass uses the configured LLM endpoint."""
        llm_analyzer = LLMAnalyzer(
            client=LLMClient.from_config(config),
            timeout=config.llm_timeout,
            temperature=config.analysis_temperature,
            max_tokens=config.analysis_max_tokens,
        )
        return cls(llm_analyzer=llm_analyzer)

    async def audit(self, code: str, language: str, contract_name: Optional[str] = None) -> AuditReport:
        """Audit ``code`` and return the aggregated report. Never raises."""
        logger.info(f"Auditing {language} contract {contract_name or '<unnamed>'}")
        try:
            outcomes = await self._dispatch(code, language, contract_name)
            return self._aggregate(outcomes)
        except Exception as e:
            logger.exception("Audit failed")
            return AuditReport.failure(f"Audit failed: {e}")

    async def _dispatch(self, code: str, language: str, contract_name: Optional[str]) -> List[AnalyzerOutcome]:
        names = ['static', 'ai', 'depin']
        settled = await asyncio.gather(
            _invoke(self.static_analyzer.analyze, code, language),
            _invoke(self.llm_analyzer.analyze, code, language, contract_name),
            _invoke(self.depin_analyzer.analyze, code, language),
            return_exceptions=True,
        )

        outcomes = []
        for name, raw in zip(names, settled):
            if isinstance(raw, BaseException):
                reason = str(raw) or type(raw).__name__
                logger.error(f"{name} analysis failed: {reason}")
                outcomes.append(AnalyzerOutcome(name=name, error=reason))
                continue
            try:
                outcomes.append(AnalyzerOutcome(name=name, result=AnalyzerResult.from_raw(name, raw)))
            except TypeError as e:
                logger.error(f"{name} analysis failed: {e}")
                outcomes.append(AnalyzerOutcome(name=name, error=str(e)))
        return outcomes

    def _aggregate(self, outcomes: List[AnalyzerOutcome]) -> AuditReport:
        by_name = {outcome.name: outcome for outcome in outcomes}
        static_result = by_name['static'].result_or_empty()
        ai_result = by_name['ai'].result_or_empty()
        domain_result = by_name['depin'].result_or_empty()

        analysis_errors = [
            f"{outcome.name} analysis failed: {outcome.error}" for outcome in outcomes if not outcome.ok
        ]

        merged: List[Vulnerability] = []
        for outcome in outcomes:
            merged.extend(coerce_vulnerabilities(outcome.result_or_empty().vulnerabilities))

        vulnerabilities = sort_by_severity(deduplicate_vulnerabilities(merged))
        score = calculate_score(vulnerabilities)
        summary = generate_summary(vulnerabilities, domain_result, score)

        logger.info(f"Audit complete: score {score}, {len(vulnerabilities)} finding(s), risk {summary.risk_level}")
        return AuditReport(
            score=score,
            risk_level=summary.risk_level,
            vulnerabilities=vulnerabilities,
            categories=categorize_vulnerabilities(vulnerabilities),
            summary=summary,
            depin_insights=list(domain_result.insights),
            node_ops_recommendations=list(domain_result.node_ops_recommendations),
            gas_optimizations=list(static_result.gas_optimizations),
            code_quality={
                'complexity': static_result.complexity or 'Medium',
                'testCoverage': 'N/A',
                'documentation': static_result.documentation or 'Partial',
            },
            analysis_errors=analysis_errors,
            ai_error=ai_result.error,
        )


_default_engine: Optional[AuditEngine] = None


def get_default_engine() -> AuditEngine:
    global _default_engine
    if _default_engine is None:
        from auditforge.config_manager import ConfigManager
        _default_engine = AuditEngine.from_config(ConfigManager().config)
    return _default_engine


async def audit_contract(code: str, language: str, contract_name: Optional[str] = None,
                         engine: Optional[AuditEngine] = None) -> AuditReport:
    """Audit with ``engine`` or the configuration-built default engine."""
    return await (engine or get_default_engine()).audit(code, language, contract_name)
