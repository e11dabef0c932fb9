"""
Main CLI implementation for AuditForge.
"""

import asyncio
import json
import logging
import time
from pathlib import Path
from typing import List, Optional

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from auditforge.audit_engine import AuditEngine
from auditforge.audit_history import AuditHistory
from auditforge.chat_service import ChatService
from auditforge.code_correction import CodeCorrector, generate_code_diff
from auditforge.config_manager import ConfigManager
from auditforge.etherscan_fetcher import EtherscanFetcher, flatten_source_code
from auditforge.llm_client import LLMClient
from auditforge.models import AuditReport
from auditforge.report_generator import ReportGenerator

logger = logging.getLogger(__name__)

HISTORY_FILE = "~/.auditforge/history.json"

SEVERITY_STYLES = {
    'critical': 'bold red',
    'high': 'red',
    'medium': 'yellow',
    'low': 'blue',
    'info': 'dim',
}

RISK_STYLES = {
    'Critical': 'bold red',
    'High': 'red',
    'Medium': 'yellow',
    'Low': 'green',
}


def detect_language(path: str) -> str:
    return 'rust' if Path(path).suffix.lower() == '.rs' else 'solidity'


class AuditForgeCLI:
    """Main CLI class for AuditForge."""

    def __init__(self, config_manager: Optional[ConfigManager] = None, console: Optional[Console] = None,
                 engine: Optional[AuditEngine] = None, history: Optional[AuditHistory] = None):
        self.version = "1.0.0"
        self.console = console or Console()
        self.config_manager = config_manager or ConfigManager(console=self.console)
        config = self.config_manager.config
        self.llm_client = LLMClient.from_config(config)
        self.engine = engine or AuditEngine.from_config(config)
        self.history = history or AuditHistory.get_instance(config.history_limit, HISTORY_FILE)
        self.etherscan_fetcher = EtherscanFetcher(self.config_manager)
        self.report_generator = ReportGenerator()
        self.corrector = CodeCorrector(
            self.llm_client,
            temperature=config.correction_temperature,
            max_tokens=config.correction_max_tokens,
        )

    def show_version(self):
        self.console.print(f"AuditForge v{self.version}")

    async def audit_code(self, code: str, language: str, contract_name: Optional[str]) -> AuditReport:
        """Audit bounded by ``audit_timeout``; the result is recorded in history."""
        timeout = self.config_manager.config.audit_timeout
        started = time.time()
        try:
            report = await asyncio.wait_for(self.engine.audit(code, language, contract_name), timeout=timeout)
        except asyncio.TimeoutError:
            logger.error(f"Audit timed out after {timeout}s")
            report = AuditReport.failure(f"Audit timed out after {timeout}s")
        self.history.record(report, contract_name, language, time.time() - started)
        return report

    async def run_audit(self, contract_path: str, language: Optional[str] = None, contract_name: Optional[str] = None,
                        output_format: str = 'display', output: Optional[str] = None) -> int:
        path = Path(contract_path)
        if not path.is_file():
            self.console.print(f"[red]❌ Contract file not found: {contract_path}[/red]")
            return 1

        code = path.read_text(encoding='utf-8', errors='replace')
        language = language or detect_language(contract_path)
        contract_name = contract_name or path.stem

        with self.console.status(f"[cyan]🔍 Auditing {contract_name} ({language})...[/cyan]"):
            report = await self.audit_code(code, language, contract_name)

        return self._emit_report(report, contract_name, output_format, output)

    def _emit_report(self, report: AuditReport, contract_name: str, output_format: str, output: Optional[str]) -> int:
        if output_format == 'json':
            if output:
                path = self.report_generator.generate_json_report(report, output)
                self.console.print(f"[green]✓ JSON report written to {path}[/green]")
            else:
                self.console.print_json(json.dumps(report.to_dict()))
        elif output_format == 'markdown':
            target = output or str(Path(self.config_manager.config.output_dir) / f"{contract_name}_audit.md")
            path = self.report_generator.generate_markdown_report(report, target, contract_name)
            self.console.print(f"[green]✓ Markdown report written to {path}[/green]")
        else:
            self.display_report(report, contract_name)
            if output:
                path = self.report_generator.generate_markdown_report(report, output, contract_name)
                self.console.print(f"[green]✓ Markdown report written to {path}[/green]")

        return 0 if not report.analysis_errors else 2

    def display_report(self, report: AuditReport, contract_name: str) -> None:
        risk_style = RISK_STYLES.get(report.risk_level, 'white')
        header = (
            f"[bold]Score:[/bold] {report.score}/100    "
            f"[bold]Risk:[/bold] [{risk_style}]{report.risk_level}[/{risk_style}]    "
            f"[bold]Issues:[/bold] {report.summary.total_issues}\n"
            f"[bold]DePIN ready:[/bold] {'Yes' if report.summary.depin_ready else 'No'}    "
            f"[bold]NodeOps compatible:[/bold] {'Yes' if report.summary.node_ops_compatible else 'No'}\n\n"
            f"{report.summary.recommendation}"
        )
        self.console.print(Panel(header, title=f"🛡️ {contract_name}", border_style=risk_style))

        if report.vulnerabilities:
            table = Table(title="Findings")
            table.add_column("#", style="dim", justify="right")
            table.add_column("Severity")
            table.add_column("Category", style="cyan")
            table.add_column("Title", style="bold")
            table.add_column("Line", justify="right")
            for i, vuln in enumerate(report.vulnerabilities, 1):
                style = SEVERITY_STYLES.get(vuln.severity, 'white')
                table.add_row(
                    str(i),
                    f"[{style}]{vuln.severity.upper()}[/{style}]",
                    vuln.category,
                    vuln.title,
                    str(vuln.line) if vuln.line else "-",
                )
            self.console.print(table)
        else:
            self.console.print("[green]✅ No vulnerabilities found[/green]")

        if report.gas_optimizations:
            gas_table = Table(title="⛽ Gas Optimizations")
            gas_table.add_column("Title", style="cyan")
            gas_table.add_column("Impact", style="yellow")
            gas_table.add_column("Description")
            for hint in report.gas_optimizations:
                gas_table.add_row(hint.get('title', ''), hint.get('impact', ''), hint.get('description', ''))
            self.console.print(gas_table)

        if report.depin_insights:
            for insight in report.depin_insights:
                self.console.print(f"  • [magenta]{insight['category']}[/magenta] ({insight['importance']}): {insight['finding']}")

        quality = report.code_quality
        self.console.print(
            f"\n[bold]Code quality:[/bold] complexity {quality.get('complexity')}, "
            f"documentation {quality.get('documentation')}, test coverage {quality.get('testCoverage')}"
        )

        if report.ai_error:
            self.console.print(f"[yellow]⚠️ {report.ai_error}[/yellow]")
        for error in report.analysis_errors:
            self.console.print(f"[red]✗ {error}[/red]")

    async def run_fetch(self, target: str, chain: Optional[str] = None, audit: bool = False,
                        output: Optional[str] = None) -> int:
        network, address = self.etherscan_fetcher.parse_explorer_url(target)
        if not address:
            self.console.print(f"[red]❌ Not a contract address or explorer URL: {target}[/red]")
            return 1
        chain = chain or network or self.config_manager.config.default_chain
        if chain not in self.etherscan_fetcher.SUPPORTED_NETWORKS:
            self.console.print(f"[red]❌ Unsupported network: {chain}[/red]")
            return 1

        with self.console.status(f"[cyan]🔍 Fetching {address} on {chain}...[/cyan]"):
            details = await asyncio.to_thread(self.etherscan_fetcher.fetch_complete_contract_details, address, chain)

        table = Table(title=f"📄 {details.get('contract_name') or address}")
        table.add_column("Field", style="cyan")
        table.add_column("Value", style="green")
        table.add_row("Address", address)
        table.add_row("Network", details.get('chain_name') or chain)
        table.add_row("Verified", "Yes" if details.get('is_verified') else "No")
        table.add_row("Proxy", "Yes" if details.get('is_proxy') else "No")
        table.add_row("Compiler", str(details.get('compiler_version') or '-'))
        table.add_row("Creator", str(details.get('creator') or '-'))
        table.add_row("Explorer", str(details.get('explorer_url') or '-'))
        self.console.print(table)

        for part, error in (details.get('errors') or {}).items():
            if error:
                self.console.print(f"[yellow]⚠️ {part}: {error}[/yellow]")

        source = details.get('source_code')
        if not source:
            self.console.print("[red]❌ Contract source code is not available (not verified)[/red]")
            return 1

        code = flatten_source_code(source)
        if output:
            out_path = Path(output)
            out_path.parent.mkdir(parents=True, exist_ok=True)
            out_path.write_text(code, encoding='utf-8')
            self.console.print(f"[green]✓ Source saved to {out_path}[/green]")

        if audit:
            name = details.get('contract_name') or address
            with self.console.status(f"[cyan]🔍 Auditing {name}...[/cyan]"):
                report = await self.audit_code(code, 'solidity', name)
            self.display_report(report, name)
        return 0

    async def run_fix(self, contract_path: str, language: Optional[str] = None, finding: Optional[str] = None,
                      output: Optional[str] = None) -> int:
        path = Path(contract_path)
        if not path.is_file():
            self.console.print(f"[red]❌ Contract file not found: {contract_path}[/red]")
            return 1
        if not self.llm_client.is_configured:
            self.console.print("[red]❌ AI API key required for code correction feature[/red]")
            self.console.print("   Set AIML_API_KEY or run: auditforge config --set llm_api_key=YOUR_KEY")
            return 1

        code = path.read_text(encoding='utf-8', errors='replace')
        language = language or detect_language(contract_path)

        with self.console.status("[cyan]🔍 Auditing before correction...[/cyan]"):
            report = await self.audit_code(code, language, path.stem)

        if finding:
            matches = [v for v in report.vulnerabilities if v.title.lower() == finding.lower()]
            if not matches:
                self.console.print(f"[red]❌ No finding titled '{finding}' in the audit[/red]")
                return 1
            with self.console.status(f"[cyan]🔨 Fixing {matches[0].title}...[/cyan]"):
                result = await self.corrector.generate_single_fix(code, language, matches[0])
            corrected = result.get('fixed_code')
            notes = result.get('explanation', '')
        else:
            with self.console.status("[cyan]🔨 Generating corrected contract...[/cyan]"):
                result = await self.corrector.generate_correction(code, language, report.vulnerabilities)
            corrected = result.get('corrected_code')
            notes = result.get('summary', '')
            for fix in result.get('fixes', []):
                notes += f"\n- {fix}"

        if not result.get('success') or not corrected:
            self.console.print(f"[red]❌ {result.get('message')}[/red]")
            if result.get('error'):
                self.console.print(f"   {result['error']}")
            return 1

        diff = generate_code_diff(code, corrected)
        self.console.print(Panel(
            notes.strip() or "No explanation provided",
            title="🔨 Code Correction",
            border_style="green",
        ))
        self.console.print(
            f"[green]+{len(diff['added'])}[/green] added, [red]-{len(diff['removed'])}[/red] removed, "
            f"[yellow]~{len(diff['modified'])}[/yellow] modified lines"
        )

        if output:
            out_path = Path(output)
            out_path.parent.mkdir(parents=True, exist_ok=True)
            out_path.write_text(corrected + "\n", encoding='utf-8')
            self.console.print(f"[green]✓ Corrected contract written to {out_path}[/green]")
        else:
            self.console.print(corrected)
        return 0

    async def run_chat(self, message: str, attached_file: Optional[str] = None, chain: Optional[str] = None) -> int:
        attachment = None
        if attached_file:
            path = Path(attached_file)
            if not path.is_file():
                self.console.print(f"[red]❌ File not found: {attached_file}[/red]")
                return 1
            attachment = {
                'code': path.read_text(encoding='utf-8', errors='replace'),
                'language': detect_language(attached_file),
                'filename': path.name,
            }

        service = ChatService(
            engine=self.engine,
            fetcher=self.etherscan_fetcher,
            client=self.llm_client,
            corrector=self.corrector,
            history=self.history,
        )
        with self.console.status("[cyan]💬 Thinking...[/cyan]"):
            response = await service.process_message(
                message, attachment, chain or self.config_manager.config.default_chain,
            )

        from rich.markdown import Markdown
        self.console.print(Markdown(response['message']))
        for suggestion in response.get('suggestions', []):
            self.console.print(f"  💡 {suggestion}")
        return 0

    def show_history(self, limit: int = 10) -> int:
        records = self.history.list(limit)
        if not records:
            self.console.print("[yellow]No audits recorded yet[/yellow]")
            return 0

        table = Table(title="📜 Audit History")
        table.add_column("ID", style="dim")
        table.add_column("When", style="cyan")
        table.add_column("Contract", style="bold")
        table.add_column("Language")
        table.add_column("Score", justify="right")
        table.add_column("Risk")
        table.add_column("Issues", justify="right")
        for record in records:
            style = RISK_STYLES.get(record.risk_level, 'white')
            table.add_row(
                record.audit_id[:8],
                record.timestamp[:19].replace('T', ' '),
                record.contract_name,
                record.language,
                str(record.score),
                f"[{style}]{record.risk_level}[/{style}]",
                str(record.total_issues),
            )
        self.console.print(table)
        return 0

    def run_config(self, show: bool = False, set_values: Optional[List[str]] = None) -> int:
        if set_values:
            for item in set_values:
                key, sep, value = item.partition('=')
                if not sep:
                    self.console.print(f"[red]✗ Expected KEY=VALUE, got: {item}[/red]")
                    return 1
                try:
                    self.config_manager.set_value(key.strip(), value.strip())
                except (KeyError, ValueError) as e:
                    self.console.print(f"[red]✗ {e}[/red]")
                    return 1
            if not self.config_manager.save_config():
                return 1

        if show or not set_values:
            self.config_manager.show_config()
        return 0
