"""
LLM code correction: rewrites a contract to fix its critical and high
severity findings, or fixes a single finding.
"""

import logging
import re
from typing import Any, Dict, List, Optional

from auditforge.llm_client import LLMClient
from auditforge.models import Vulnerability, coerce_vulnerabilities

logger = logging.getLogger(__name__)

CORRECTION_SYSTEM_PROMPT = (
    "You are an expert smart contract developer specializing in security fixes. Generate corrected "
    "code that fixes all identified vulnerabilities while maintaining the original functionality. "
    "Provide clear explanations for each fix."
)

SINGLE_FIX_SYSTEM_PROMPT = (
    "You are an expert smart contract security engineer. Provide precise, secure fixes for vulnerabilities."
)

NO_KEY_MESSAGE = 'AI API key required for code correction feature'

_CODE_SECTION = re.compile(r'CORRECTED_CODE:\s*```[\w]*\n([\s\S]*?)```')
_SUMMARY_SECTION = re.compile(r'CHANGES_SUMMARY:\s*([\s\S]*?)(?=FIXES_APPLIED:|$)')
_FIXES_SECTION = re.compile(r'FIXES_APPLIED:\s*([\s\S]*?)$')
_EXPLANATION_SECTION = re.compile(r'EXPLANATION:\s*([\s\S]*?)$')


def build_correction_prompt(code: str, language: str, vulnerabilities: List[Vulnerability]) -> str:
    targets = [v for v in vulnerabilities if v.severity in ('critical', 'high')]
    vuln_lines = []
    for i, vuln in enumerate(targets, 1):
        location = f" - Line {vuln.line}" if vuln.line else ""
        vuln_lines.append(f"{i}. {vuln.title} ({vuln.severity}){location}\n   {vuln.description}")
    vuln_list = "\n".join(vuln_lines)

    return f"""Fix all critical and high severity vulnerabilities in this {language} smart contract.

Original Code:
```{language}
{code}
```

Vulnerabilities to Fix:
{vuln_list}

Provide:
1. Complete corrected code with all vulnerabilities fixed
2. Summary of changes made
3. List of fixes applied

Format your response as:
CORRECTED_CODE:
```{language}
[complete corrected code here]
```

CHANGES_SUMMARY:
[summary of changes]

FIXES_APPLIED:
- [fix 1]
- [fix 2]
..."""


def build_single_fix_prompt(code: str, language: str, vulnerability: Vulnerability) -> str:
    line = f"Line: {vulnerability.line}" if vulnerability.line else ""
    return f"""Fix this specific vulnerability in the {language} code:

Vulnerability: {vulnerability.title}
Severity: {vulnerability.severity}
Description: {vulnerability.description}
{line}

Original Code:
```{language}
{code}
```

Provide:
1. The corrected code
2. Explanation of the fix
3. Why this fix resolves the vulnerability

Format your response as:
CORRECTED_CODE:
```{language}
[corrected code here]
```

EXPLANATION:
[explanation here]"""


def parse_correction_response(response: str, original_code: str) -> Dict[str, Any]:
    code_match = _CODE_SECTION.search(response or '')
    corrected_code = code_match.group(1).strip() if code_match else None
    if not corrected_code:
        return {
            'success': False,
            'message': 'Could not extract corrected code from response',
            'corrected_code': None,
        }

    summary_match = _SUMMARY_SECTION.search(response)
    summary = summary_match.group(1).strip() if summary_match else ''

    fixes_match = _FIXES_SECTION.search(response)
    fixes_text = fixes_match.group(1).strip() if fixes_match else ''
    fixes = [
        line.strip()[1:].strip()
        for line in fixes_text.split('\n')
        if line.strip().startswith('-')
    ]

    return {
        'success': True,
        'corrected_code': corrected_code,
        'original_code': original_code,
        'summary': summary,
        'fixes': fixes,
        'message': 'Code correction generated successfully',
    }


def parse_single_fix_response(response: str) -> Dict[str, Any]:
    code_match = _CODE_SECTION.search(response or '')
    fixed_code = code_match.group(1).strip() if code_match else None
    explanation_match = _EXPLANATION_SECTION.search(response or '')
    explanation = explanation_match.group(1).strip() if explanation_match else ''
    return {
        'success': bool(fixed_code),
        'fixed_code': fixed_code,
        'explanation': explanation,
        'message': 'Fix generated successfully' if fixed_code else 'Could not generate fix',
    }


def generate_code_diff(original_code: str, corrected_code: str) -> Dict[str, List[Dict[str, Any]]]:
    """Position-by-position line comparison of two versions of a contract."""
    original_lines = original_code.split('\n')
    corrected_lines = corrected_code.split('\n')
    diff = {'added': [], 'removed': [], 'modified': [], 'unchanged': []}

    for i in range(max(len(original_lines), len(corrected_lines))):
        original = original_lines[i] if i < len(original_lines) else ''
        corrected = corrected_lines[i] if i < len(corrected_lines) else ''
        line_no = i + 1

        if original == corrected:
            diff['unchanged'].append({'line': line_no, 'content': original})
        elif not original:
            diff['added'].append({'line': line_no, 'content': corrected})
        elif not corrected:
            diff['removed'].append({'line': line_no, 'content': original})
        else:
            diff['modified'].append({'line': line_no, 'original': original, 'corrected': corrected})
    return diff


class CodeCorrector:
    """Generates corrected contract code with the configured LLM."""

    def __init__(self, client: Optional[LLMClient] = None, temperature: float = 0.2,
                 max_tokens: int = 3000, single_fix_max_tokens: int = 2000):
        self.client = client or LLMClient()
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.single_fix_max_tokens = single_fix_max_tokens

    async def generate_correction(self, code: str, language: str, vulnerabilities: List[Any]) -> Dict[str, Any]:
        """Rewrite ``code`` so its critical and high findings are fixed."""
        if not self.client.is_configured:
            logger.info("No LLM API key configured, code correction unavailable")
            return {'success': False, 'message': NO_KEY_MESSAGE, 'corrected_code': None}

        prompt = build_correction_prompt(code, language, coerce_vulnerabilities(vulnerabilities))
        try:
            response = await self.client.complete(
                CORRECTION_SYSTEM_PROMPT, prompt,
                temperature=self.temperature, max_tokens=self.max_tokens,
            )
        except Exception as e:
            logger.error(f"Code correction error: {e}")
            return {
                'success': False,
                'message': 'Failed to generate code correction',
                'error': str(e),
                'corrected_code': None,
            }
        return parse_correction_response(response, code)

    async def generate_single_fix(self, code: str, language: str, vulnerability: Any) -> Dict[str, Any]:
        """Fix one finding, returning the fixed code and an explanation."""
        if not self.client.is_configured:
            return {'success': False, 'message': NO_KEY_MESSAGE, 'fixed_code': None}

        if not isinstance(vulnerability, Vulnerability):
            vulnerability = Vulnerability.from_dict(vulnerability)
        prompt = build_single_fix_prompt(code, language, vulnerability)
        try:
            response = await self.client.complete(
                SINGLE_FIX_SYSTEM_PROMPT, prompt,
                temperature=self.temperature, max_tokens=self.single_fix_max_tokens,
            )
        except Exception as e:
            logger.error(f"Single fix error: {e}")
            return {'success': False, 'message': 'Failed to generate fix', 'error': str(e), 'fixed_code': None}
        return parse_single_fix_response(response)

    @staticmethod
    def generate_code_diff(original_code: str, corrected_code: str) -> Dict[str, List[Dict[str, Any]]]:
        return generate_code_diff(original_code, corrected_code)
