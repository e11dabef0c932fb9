"""
LLM-powered smart contract analysis.

Asks an OpenAI-compatible model for a JSON list of findings. When the model
is unavailable (no key, error, timeout or empty answer) a small set of local
pattern checks stands in so the audit still produces an AI-pass result.
"""

import asyncio
import logging
import re
from typing import Any, Callable, Dict, List, Optional

from auditforge.json_utils import parse_vulnerability_envelope
from auditforge.llm_client import LLMClient, LLMUnavailableError
from auditforge.models import AnalyzerResult, Vulnerability, coerce_vulnerabilities

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are an expert smart contract auditor specializing in DePIN (Decentralized Physical "
    "Infrastructure Networks) and NodeOps security. Analyze contracts for vulnerabilities, with "
    "special focus on node operator risks, escrow mechanisms, tokenomics, and decentralized "
    "infrastructure patterns."
)

_SEVERITY_LINE = re.compile(r'critical|high|medium|low', re.IGNORECASE)
_UNCHECKED_CALL = re.compile(r'\.call\(|\.delegatecall\(')


def build_audit_prompt(code: str, language: str, contract_name: Optional[str] = None) -> str:
    """Build the user prompt sent with every analysis request."""
    return f"""Analyze this {language} smart contract for security vulnerabilities and code quality issues.
Contract Name: {contract_name or 'Unknown'}

Focus areas:
1. Security vulnerabilities (reentrancy, access control, integer overflow, etc.)
2. DePIN-specific risks (node operator incentives, slashing mechanisms, reward distribution)
3. NodeOps concerns (uptime verification, proof systems, stake management)
4. Gas optimization opportunities
5. Code quality and best practices

Contract Code:
```{language}
{code}
```

Provide your analysis in the following JSON format:
{{
  "vulnerabilities": [
    {{
      "title": "Vulnerability title",
      "severity": "critical|high|medium|low|info",
      "category": "security|depin|nodeops|gas|quality",
      "description": "Detailed description",
      "line": line_number_or_null,
      "remediation": "How to fix this issue"
    }}
  ]
}}

Return ONLY valid JSON, no additional text."""


def parse_json_findings(response: str) -> Optional[List[Vulnerability]]:
    """Findings from the JSON object in ``response``; None when there is none."""
    entries = parse_vulnerability_envelope(response)
    if entries is None:
        return None
    return coerce_vulnerabilities(entries)


def _severity_from_text(text: str) -> str:
    lower = text.lower()
    for severity in ('critical', 'high', 'medium', 'low'):
        if severity in lower:
            return severity
    return 'info'


def parse_text_findings(response: str) -> Optional[List[Vulnerability]]:
    """Line-oriented extraction for answers that are not JSON.

    Each line mentioning a severity word opens a finding titled by that line;
    following non-blank lines become its description.
    """
    findings: List[Dict[str, Any]] = []
    current = None
    for line in (response or '').split('\n'):
        if _SEVERITY_LINE.search(line):
            current = {
                'title': line.strip(),
                'severity': _severity_from_text(line),
                'category': 'security',
                'description': '',
            }
            findings.append(current)
        elif current is not None and line.strip():
            current['description'] = f"{current['description']} {line.strip()}".strip()

    if not findings:
        return None
    return [Vulnerability.from_dict(f) for f in findings]


PARSERS: List[Callable[[str], Optional[List[Vulnerability]]]] = [
    parse_json_findings,
    parse_text_findings,
]


def parse_llm_response(response: str) -> List[Vulnerability]:
    """Run the parser chain; the first parser that answers wins."""
    for parser in PARSERS:
        findings = parser(response)
        if findings is not None:
            return findings
    return []


def fallback_analysis(code: str, language: str) -> List[Vulnerability]:
    """Reduced local checks used when the model cannot be consulted."""
    if not code or not code.strip():
        return []

    findings: List[Dict[str, Any]] = []
    if language == 'solidity':
        if '.call{value:' in code or '.call.value(' in code:
            findings.append({
                'title': 'Potential Reentrancy Vulnerability',
                'severity': 'high',
                'category': 'security',
                'description': 'Contract uses low-level call with value transfer. This may be vulnerable to reentrancy attacks.',
                'remediation': 'Use the Checks-Effects-Interactions pattern or ReentrancyGuard from OpenZeppelin.',
            })
        if 'tx.origin' in code:
            findings.append({
                'title': 'Use of tx.origin for Authorization',
                'severity': 'high',
                'category': 'security',
                'description': 'Using tx.origin for authorization is dangerous and can lead to phishing attacks.',
                'remediation': 'Replace tx.origin with msg.sender for authorization checks.',
            })
        if 'onlyOwner' not in code and 'require(msg.sender' not in code:
            findings.append({
                'title': 'Missing Access Control',
                'severity': 'medium',
                'category': 'security',
                'description': 'Contract may lack proper access control mechanisms.',
                'remediation': 'Implement role-based access control using OpenZeppelin AccessControl or Ownable.',
            })
        if _UNCHECKED_CALL.search(code):
            findings.append({
                'title': 'Unchecked External Call',
                'severity': 'medium',
                'category': 'security',
                'description': 'External calls should have their return values checked.',
                'remediation': 'Always check the return value of external calls and handle failures appropriately.',
            })
    elif language == 'rust':
        if '.unwrap()' in code:
            findings.append({
                'title': 'Unsafe unwrap() Usage',
                'severity': 'medium',
                'category': 'quality',
                'description': 'Using unwrap() can cause panics. Consider proper error handling.',
                'remediation': 'Replace unwrap() with proper error handling using ? operator or match statements.',
            })
        if 'unsafe ' in code:
            findings.append({
                'title': 'Unsafe Code Block',
                'severity': 'high',
                'category': 'security',
                'description': 'Unsafe blocks bypass Rust safety guarantees and should be carefully reviewed.',
                'remediation': 'Minimize unsafe code and document safety invariants thoroughly.',
            })
    return [Vulnerability.from_dict(f) for f in findings]


class LLMAnalyzer:
    """LLM-powered smart contract vulnerability analysis."""

    name = 'ai'

    def __init__(self, client: Optional[LLMClient] = None, timeout: float = 60,
                 temperature: float = 0.3, max_tokens: int = 2000):
        self.client = client or LLMClient()
        self.timeout = timeout
        self.temperature = temperature
        self.max_tokens = max_tokens

    @property
    def has_api_key(self) -> bool:
        return self.client.is_configured

    async def analyze(self, code: str, language: str, contract_name: Optional[str] = None) -> AnalyzerResult:
        """Analyze ``code`` with the model, degrading to local checks on failure."""
        if not self.has_api_key:
            logger.info("No LLM API key configured, using fallback analysis")
            return self._fallback(code, language, "AI analysis unavailable: no API key configured")

        prompt = build_audit_prompt(code, language, contract_name)
        try:
            response = await asyncio.wait_for(
                self.client.complete(
                    SYSTEM_PROMPT, prompt,
                    temperature=self.temperature, max_tokens=self.max_tokens,
                ),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(f"LLM analysis timed out after {self.timeout}s")
            return self._fallback(code, language, f"AI analysis unavailable: timed out after {self.timeout}s")
        except LLMUnavailableError as e:
            return self._fallback(code, language, f"AI analysis unavailable: {e}")
        except Exception as e:
            logger.error(f"LLM analysis error: {e}")
            return self._fallback(code, language, f"AI analysis unavailable: {e}")

        if not response or not response.strip():
            logger.warning("Empty response from LLM")
            return self._fallback(code, language, "AI analysis unavailable: empty response from model")

        findings = parse_llm_response(response)
        logger.info(f"LLM analysis completed with {len(findings)} finding(s)")
        return AnalyzerResult(
            analyzer=self.name,
            vulnerabilities=findings,
            raw_response=response,
            model=self.client.model,
        )

    def _fallback(self, code: str, language: str, reason: str) -> AnalyzerResult:
        return AnalyzerResult(
            analyzer=self.name,
            vulnerabilities=fallback_analysis(code, language),
            error=reason,
            model='fallback',
        )
