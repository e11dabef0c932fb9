"""Tests for auditforge.report_generator."""

import asyncio
import json

import pytest

from conftest import ORACLE_CONSUMER, FakeLLMClient

from auditforge.audit_engine import AuditEngine
from auditforge.llm_analyzer import LLMAnalyzer
from auditforge.models import AuditReport
from auditforge.report_generator import ReportGenerator


@pytest.fixture
def oracle_report():
    engine = AuditEngine(llm_analyzer=LLMAnalyzer(client=FakeLLMClient(api_key="")))
    return asyncio.run(engine.audit(ORACLE_CONSUMER, "solidity", "Consumer"))


def test_markdown_sections(oracle_report):
    content = ReportGenerator().render_markdown(oracle_report, 'Consumer')
    assert content.startswith("# AuditForge Report")
    assert "**Contract:** Consumer" in content
    assert "- **Security Score:** 90/100" in content
    assert "- **DePIN Ready:** No" in content
    assert "## Findings by Severity" in content
    assert "- 🟠 **High:** 1" in content
    assert "### 1. Oracle Manipulation Risk" in content
    assert "## DePIN Insights" in content
    assert "## Code Quality" in content
    assert "## Analysis Notes" in content
    assert "AI analysis unavailable: no API key configured" in content


def test_markdown_without_findings():
    report = AuditReport.failure("Audit failed: boom")
    content = ReportGenerator().render_markdown(report)
    assert "**Contract:** Unknown Contract" in content
    assert "No vulnerabilities found." in content
    assert "- Audit failed: boom" in content
    assert "## DePIN Insights" not in content


def test_markdown_from_history_record(fresh_history):
    record = fresh_history.record(AuditReport.failure("x"), 'Vault', 'rust')
    content = ReportGenerator().render_markdown(record)
    assert "**Contract:** Vault" in content
    assert "**Language:** rust" in content
    assert f"**Generated:** {record.timestamp}" in content


def test_write_markdown_report(oracle_report, tmp_path):
    path = ReportGenerator().generate_markdown_report(oracle_report, tmp_path / "out" / "report.md", 'Consumer')
    assert path.exists()
    assert "Oracle Manipulation Risk" in path.read_text()


def test_write_json_report(oracle_report, tmp_path):
    path = ReportGenerator().generate_json_report(oracle_report, tmp_path / "report.json")
    data = json.loads(path.read_text())
    assert data == oracle_report.to_dict()
    assert data['summary']['depinReady'] is False
