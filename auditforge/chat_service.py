"""
Chat intent router.

Turns a free-text message (plus an optional attached contract file) into an
explorer lookup, an audit, a fix suggestion or a help message.
"""

import asyncio
import logging
import re
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from auditforge.audit_engine import AuditEngine
from auditforge.audit_history import AuditHistory
from auditforge.code_correction import CodeCorrector
from auditforge.etherscan_fetcher import EtherscanFetcher, flatten_source_code
from auditforge.llm_client import LLMClient
from auditforge.models import AuditReport

logger = logging.getLogger(__name__)

ADDRESS_IN_TEXT = re.compile(r'0x[a-fA-F0-9]{40}')

CHAT_SYSTEM_PROMPT = "You are a smart contract security expert assistant."

FILE_WORDS = ('file', 'upload', 'attach')
AUDIT_WORDS = ('audit', 'analyze', 'check', 'vulnerabilit', 'security')
FIX_WORDS = ('fix', 'correct', 'rewrite', 'improve')
EXPLAIN_WORDS = ('explain', 'what is', 'tell me about', 'describe')


@dataclass
class UserIntent:
    address: Optional[str]
    has_file_attachment: bool
    wants_audit: bool
    wants_fix: bool
    wants_explanation: bool
    original_message: str


def parse_user_intent(message: str) -> UserIntent:
    lower = (message or '').lower()
    address_match = ADDRESS_IN_TEXT.search(message or '')
    return UserIntent(
        address=address_match.group(0) if address_match else None,
        has_file_attachment=any(word in lower for word in FILE_WORDS),
        wants_audit=any(word in lower for word in AUDIT_WORDS),
        wants_fix=any(word in lower for word in FIX_WORDS),
        wants_explanation=any(word in lower for word in EXPLAIN_WORDS),
        original_message=message,
    )


EXAMPLE_ADDRESS_SUGGESTION = 'Analyze contract: 0xdAC17F958D2ee523a2206206994597C13D831ec7'
ATTACH_SUGGESTION = 'Attach a contract file'
EXPLAIN_SUGGESTION = 'Explain common vulnerabilities'


def help_suggestions(intent: UserIntent) -> List[str]:
    """Starter suggestions, leading with whatever the message hinted at."""
    suggestions = [EXAMPLE_ADDRESS_SUGGESTION, ATTACH_SUGGESTION, EXPLAIN_SUGGESTION]
    if intent.has_file_attachment:
        suggestions.remove(ATTACH_SUGGESTION)
        suggestions.insert(0, ATTACH_SUGGESTION)
    elif intent.wants_explanation:
        suggestions.remove(EXPLAIN_SUGGESTION)
        suggestions.insert(0, EXPLAIN_SUGGESTION)
    return suggestions


def audit_suggestions(intent: UserIntent, report: AuditReport, fix_label: str) -> List[str]:
    """Follow-ups after an audit; empty when nothing was found or asked for."""
    if not report.vulnerabilities:
        return []
    suggestions = []
    if intent.wants_fix:
        suggestions.append(fix_label)
    if intent.wants_explanation:
        suggestions.append(f"Explain {report.vulnerabilities[0].title}")
    if suggestions or intent.wants_audit:
        suggestions.append('Export a Markdown report')
    return suggestions


def build_chat_prompt(user_message: str, address: Optional[str] = None,
                      contract_details: Optional[Dict[str, Any]] = None,
                      report: Optional[AuditReport] = None) -> str:
    prompt = f'The user asked: "{user_message}"\n\n'

    if contract_details:
        prompt += "Contract Details:\n"
        prompt += f"- Name: {contract_details.get('contract_name')}\n"
        prompt += f"- Address: {address}\n"
        prompt += f"- Chain: {contract_details.get('chain_name')}\n"
        prompt += f"- Verified: {'Yes' if contract_details.get('is_verified') else 'No'}\n"
        prompt += f"- Compiler: {contract_details.get('compiler_version')}\n"
        if contract_details.get('is_proxy'):
            prompt += "- Type: Proxy Contract\n"
        prompt += "\n"

    if report is not None:
        prompt += "Audit Results:\n"
        prompt += f"- Security Score: {report.score}/100\n"
        prompt += f"- Risk Level: {report.risk_level}\n"
        prompt += f"- Total Issues: {len(report.vulnerabilities)}\n"
        if report.vulnerabilities:
            prompt += "\nVulnerabilities Found:\n"
            for idx, vuln in enumerate(report.vulnerabilities, 1):
                prompt += f"{idx}. {vuln.title} ({vuln.severity})\n"
                prompt += f"   - {vuln.description}\n"
        prompt += "\n"

    prompt += (
        "Please provide a helpful, concise response focusing on security aspects and actionable "
        "recommendations. If there are vulnerabilities, explain them clearly and suggest fixes."
    )
    return prompt


HELP_MESSAGE = """I can help you analyze smart contracts! Here's what I can do:

🔍 **Analyze Contracts:**
- Paste a contract address (e.g., 0x...)
- Attach a contract file (.sol, .rs)
- I'll check for vulnerabilities and security issues

🔨 **Fix Vulnerabilities:**
- I can rewrite contracts to fix security issues
- Get AI-powered code corrections

💬 **Ask Questions:**
- "What vulnerabilities does this contract have?"
- "Can you fix this contract?"
- "Explain the security issues"

Try pasting a contract address or attaching a file to get started!"""


class ChatService:
    """Routes chat messages to the explorer, the audit engine and the LLM."""

    def __init__(self, engine: Optional[AuditEngine] = None, fetcher: Optional[EtherscanFetcher] = None,
                 client: Optional[LLMClient] = None, corrector: Optional[CodeCorrector] = None,
                 history: Optional[AuditHistory] = None):
        self.client = client or LLMClient()
        self.engine = engine or AuditEngine()
        self.fetcher = fetcher
        self.corrector = corrector or CodeCorrector(self.client)
        self.history = history

    async def process_message(self, message: str, attached_file: Optional[Dict[str, str]] = None,
                              chain: str = 'ethereum') -> Dict[str, Any]:
        """Answer one chat message with ``{message, data, suggestions}``.

        ``attached_file`` is ``{code, language, filename}``.
        """
        try:
            intent = parse_user_intent(message)
            if intent.address:
                return await self._handle_address(intent, chain)
            if attached_file:
                return await self._handle_file(intent, attached_file)
            return {
                'message': HELP_MESSAGE,
                'data': None,
                'suggestions': help_suggestions(intent),
            }
        except Exception as e:
            logger.exception("Error processing chat message")
            return {
                'message': f"❌ An error occurred: {e}",
                'data': None,
                'suggestions': ['Try again'],
            }

    async def _handle_address(self, intent: UserIntent, chain: str) -> Dict[str, Any]:
        address = intent.address
        fetcher = self.fetcher or EtherscanFetcher()
        network = fetcher.SUPPORTED_NETWORKS.get(chain)
        if network is None:
            return {'message': f"❌ Unsupported chain: {chain}", 'data': None, 'suggestions': []}

        details = await asyncio.to_thread(fetcher.fetch_complete_contract_details, address, chain)
        source_code = details.get('source_code') if details.get('success') else None

        if not source_code:
            explorer_url = f"{network['explorer_url']}/address/{address}"
            summary = "📍 **Contract Address Found**\n\n"
            summary += f"**Address:** `{address}`\n"
            summary += f"**Network:** {network['name']}\n"
            summary += f"**Explorer:** {explorer_url}\n\n"
            summary += "ℹ️ Source code is not available via the explorer API.\n\n"
            summary += "**What you can do:**\n"
            summary += "• View transaction history on the explorer\n"
            summary += "• Attach the source code for security analysis\n"
            return {
                'message': summary,
                'data': {
                    'type': 'basic_info',
                    'address': address,
                    'chain': chain,
                    'explorer_url': explorer_url,
                    'errors': details.get('errors'),
                },
                'suggestions': [
                    'View on explorer',
                    'Attach contract source code for audit',
                    'Ask about common vulnerabilities',
                ],
            }

        contract_name = details.get('contract_name') or address
        report = await self._audit(flatten_source_code(source_code), 'solidity', contract_name)

        summary = f"✅ **{contract_name}** analyzed successfully!\n\n"
        summary += f"📊 **Security Score:** {report.score}/100 ({report.risk_level})\n"
        summary += f"🔍 **Issues Found:** {len(report.vulnerabilities)}\n\n"
        severe = [v for v in report.vulnerabilities if v.severity in ('critical', 'high')][:3]
        if severe:
            summary += "**Critical Vulnerabilities:**\n"
            for idx, vuln in enumerate(severe, 1):
                summary += f"{idx}. {vuln.title}\n"
            summary += "\n"

        commentary = await self.generate_chat_response(
            intent.original_message, address=address, contract_details=details, report=report,
        )
        if commentary:
            summary += f"\n💡 **AI Analysis:**\n{commentary}\n"

        suggestions = audit_suggestions(intent, report, 'Generate fixed version of the contract')
        return {
            'message': summary,
            'data': {
                'type': 'audit',
                'contract_details': details,
                'audit_result': report,
                'address': address,
                'chain': chain,
            },
            'suggestions': suggestions,
        }

    async def _handle_file(self, intent: UserIntent, attached_file: Dict[str, str]) -> Dict[str, Any]:
        code = attached_file.get('code', '')
        language = attached_file.get('language', 'solidity')
        filename = attached_file.get('filename', 'Contract')

        report = await self._audit(code, language, filename)

        summary = f"✅ **{filename}** analyzed successfully!\n\n"
        summary += f"📊 **Security Score:** {report.score}/100 ({report.risk_level})\n"
        summary += f"🔍 **Issues Found:** {len(report.vulnerabilities)}\n\n"
        if report.vulnerabilities:
            summary += "**Vulnerabilities:**\n"
            for idx, vuln in enumerate(report.vulnerabilities[:5], 1):
                summary += f"{idx}. **{vuln.title}** ({vuln.severity})\n"
                summary += f"   {vuln.description}\n\n"

        commentary = await self.generate_chat_response(intent.original_message, report=report)
        if commentary:
            summary += f"\n💡 **AI Recommendations:**\n{commentary}\n"

        suggestions = audit_suggestions(intent, report, 'Generate corrected contract code')
        return {
            'message': summary,
            'data': {
                'type': 'audit',
                'audit_result': report,
                'code': code,
                'language': language,
                'filename': filename,
            },
            'suggestions': suggestions,
        }

    async def _audit(self, code: str, language: str, contract_name: str) -> AuditReport:
        started = time.time()
        report = await self.engine.audit(code, language, contract_name)
        if self.history is not None:
            self.history.record(report, contract_name, language, time.time() - started)
        return report

    async def generate_chat_response(self, user_message: str, address: Optional[str] = None,
                                     contract_details: Optional[Dict[str, Any]] = None,
                                     report: Optional[AuditReport] = None) -> Optional[str]:
        """LLM commentary on an audit; None when the LLM is unavailable."""
        if not self.client.is_configured:
            return None
        prompt = build_chat_prompt(user_message, address, contract_details, report)
        try:
            response = await self.client.complete(CHAT_SYSTEM_PROMPT, prompt, temperature=0.3, max_tokens=1000)
        except Exception as e:
            logger.warning(f"Chat commentary unavailable: {e}")
            return None
        return response.strip() or None

    async def generate_fix(self, code: str, language: str, vulnerabilities: List[Any]) -> Dict[str, Any]:
        """Proxy to the code corrector for fixes requested from chat."""
        return await self.corrector.generate_correction(code, language, vulnerabilities)
