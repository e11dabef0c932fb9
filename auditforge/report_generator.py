"""
Report generation for AuditForge audit results.
"""

import json
from collections import defaultdict
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional, Union

from auditforge.audit_history import AuditRecord
from auditforge.models import AuditReport

SEVERITY_SECTIONS = ['critical', 'high', 'medium', 'low', 'info']

SEVERITY_ICONS = {
    'critical': '🔴',
    'high': '🟠',
    'medium': '🟡',
    'low': '🔵',
    'info': '⚪',
}

ReportSource = Union[AuditReport, AuditRecord, Dict[str, Any]]


def _normalize(source: ReportSource) -> Dict[str, Any]:
    """Flatten a report, history record or report dict into one dict."""
    if isinstance(source, AuditRecord):
        data = dict(source.report)
        data.setdefault('contractName', source.contract_name)
        data.setdefault('language', source.language)
        data.setdefault('auditId', source.audit_id)
        data.setdefault('timestamp', source.timestamp)
        data.setdefault('duration', source.duration)
        return data
    if isinstance(source, AuditReport):
        return source.to_dict()
    return dict(source)


class ReportGenerator:
    """Generate Markdown and JSON reports from audit results."""

    def __init__(self):
        self.timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")

    def generate_markdown_report(self, results: ReportSource, output_path: Union[str, Path],
                                 contract_name: Optional[str] = None) -> Path:
        """Write a Markdown report and return its path."""
        path = Path(output_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'w', encoding='utf-8') as f:
            f.write(self.render_markdown(results, contract_name))
        return path

    def generate_json_report(self, results: ReportSource, output_path: Union[str, Path]) -> Path:
        """Write the report as JSON (camelCase keys) and return its path."""
        path = Path(output_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'w', encoding='utf-8') as f:
            json.dump(_normalize(results), f, indent=2)
        return path

    def render_markdown(self, results: ReportSource, contract_name: Optional[str] = None) -> str:
        data = _normalize(results)
        name = contract_name or data.get('contractName') or 'Unknown Contract'
        summary = data.get('summary', {})
        vulnerabilities = data.get('vulnerabilities', [])

        severity_counts = defaultdict(int)
        for vuln in vulnerabilities:
            severity_counts[str(vuln.get('severity', 'medium')).lower()] += 1

        content = f"""# AuditForge Report

**Contract:** {name}
**Language:** {data.get('language', 'solidity')}
**Generated:** {data.get('timestamp') or self.timestamp}

## Executive Summary

- **Security Score:** {data.get('score', 0)}/100
- **Risk Level:** {data.get('riskLevel', 'Unknown')}
- **Total Findings:** {len(vulnerabilities)}
- **DePIN Ready:** {'Yes' if summary.get('depinReady') else 'No'}
- **NodeOps Compatible:** {'Yes' if summary.get('nodeOpsCompatible') else 'No'}

> {summary.get('recommendation', '')}

"""

        if vulnerabilities:
            content += "## Findings by Severity\n\n"
            for severity in SEVERITY_SECTIONS:
                if severity_counts.get(severity):
                    content += f"- {SEVERITY_ICONS[severity]} **{severity.title()}:** {severity_counts[severity]}\n"
            content += "\n## Detailed Findings\n\n"

            for i, vuln in enumerate(vulnerabilities, 1):
                severity = str(vuln.get('severity', 'medium')).lower()
                content += f"### {i}. {vuln.get('title', 'Unknown Vulnerability')}\n\n"
                content += f"**Severity:** {SEVERITY_ICONS.get(severity, '')} {severity.title()}  \n"
                content += f"**Category:** {vuln.get('category', 'security')}  \n"
                if vuln.get('line'):
                    content += f"**Line:** {vuln['line']}  \n"
                content += f"\n{vuln.get('description', '')}\n\n"
                content += f"**Remediation:** {vuln.get('remediation', '')}\n\n"
        else:
            content += "## Detailed Findings\n\nNo vulnerabilities found.\n\n"

        insights = data.get('depinInsights', [])
        if insights:
            content += "## DePIN Insights\n\n"
            for insight in insights:
                content += f"- **{insight.get('category')}** ({insight.get('importance')}): {insight.get('finding')}\n"
            content += "\n"

        recommendations = data.get('nodeOpsRecommendations', [])
        if recommendations:
            content += "## NodeOps Recommendations\n\n"
            for rec in recommendations:
                content += f"- **{rec.get('title')}** [{rec.get('priority')}]: {rec.get('description')}\n"
            content += "\n"

        gas = data.get('gasOptimizations', [])
        if gas:
            content += "## Gas Optimizations\n\n"
            for hint in gas:
                content += f"- **{hint.get('title')}** (impact: {hint.get('impact')}): {hint.get('description')}\n"
            content += "\n"

        quality = data.get('codeQuality', {})
        if quality:
            content += "## Code Quality\n\n"
            content += f"- **Complexity:** {quality.get('complexity')}\n"
            content += f"- **Test Coverage:** {quality.get('testCoverage')}\n"
            content += f"- **Documentation:** {quality.get('documentation')}\n\n"

        errors = list(data.get('analysisErrors', []))
        if data.get('aiError'):
            errors.append(data['aiError'])
        if errors:
            content += "## Analysis Notes\n\n"
            for error in errors:
                content += f"- {error}\n"
            content += "\n"

        content += "---\n*Pattern heuristics plus an LLM opinion. Not a substitute for a manual audit.*\n"
        return content
