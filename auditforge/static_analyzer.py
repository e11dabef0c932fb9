#!/usr/bin/env python3
"""
Pattern-based Static Analyzer

Source-text heuristics for Solidity and Rust contracts. Produces findings,
gas optimization hints and two coarse metrics (complexity and documentation).
Nothing here parses the language; every check is a regex or substring test.
"""

import logging
import re
from typing import Any, Dict, List

from auditforge.models import AnalyzerResult, Vulnerability

logger = logging.getLogger(__name__)


class StaticAnalyzer:
    """Regex/substring static checks over raw contract source."""

    name = 'static'

    def __init__(self):
        self.pragma_pattern = re.compile(r'pragma solidity\s+([^;]+);')
        self.outdated_version_pattern = re.compile(r'\b0\.[4-6](?:\.|\b)')
        self.loop_pattern = re.compile(r'for\s*\(')
        self.small_int_pattern = re.compile(r'\buint(?:8|16)\b')
        self.public_array_pattern = re.compile(r'\[\]\s+public\b')

        self.rust_panic_ops = ['.unwrap()', '.expect(', 'panic!(', 'unreachable!']
        self.rust_clone_pattern = re.compile(r'\.clone\(\)')

        # Complexity weights: loops count double
        self.function_pattern = re.compile(r'function\s+\w+|fn\s+\w+')
        self.condition_pattern = re.compile(r'if\s*\(|match\s+')
        self.complexity_loop_pattern = re.compile(r'for\s*\(|while\s*\(')

    def analyze(self, code: str, language: str) -> AnalyzerResult:
        """Run all checks for ``language`` over ``code``."""
        logger.debug("Running static analysis (%s, %d chars)", language, len(code or ''))
        result = AnalyzerResult(analyzer=self.name)

        if not code or not code.strip():
            result.complexity = 'Low'
            result.documentation = 'Poor'
            return result

        findings: List[Dict[str, Any]] = []
        if language == 'solidity':
            self._analyze_solidity(code, findings, result.gas_optimizations)
        elif language == 'rust':
            self._analyze_rust(code, findings, result.gas_optimizations)

        result.vulnerabilities = [Vulnerability.from_dict(f) for f in findings]
        result.complexity = self.calculate_complexity(code)
        result.documentation = self.check_documentation(code)
        return result

    def _analyze_solidity(self, code: str, findings: List[Dict[str, Any]], gas_optimizations: List[Dict[str, Any]]) -> None:
        pragma_match = self.pragma_pattern.search(code)
        if pragma_match:
            version = pragma_match.group(1).strip()
            if self.outdated_version_pattern.search(version):
                findings.append({
                    'title': 'Outdated Solidity Version',
                    'severity': 'medium',
                    'category': 'quality',
                    'description': f'Contract uses Solidity {version}. Newer versions include important security fixes and optimizations.',
                    'remediation': 'Update to Solidity ^0.8.0 or later for built-in overflow protection and other improvements.',
                })
            if '^' in version:
                findings.append({
                    'title': 'Floating Pragma',
                    'severity': 'low',
                    'category': 'quality',
                    'description': 'Contract uses a floating pragma which can lead to inconsistent compilation.',
                    'remediation': 'Lock pragma to a specific version for production contracts.',
                })

        if 'selfdestruct' in code or 'suicide' in code:
            findings.append({
                'title': 'Use of selfdestruct',
                'severity': 'high',
                'category': 'security',
                'description': 'selfdestruct can be dangerous and is being deprecated. It can lead to loss of funds.',
                'remediation': 'Avoid using selfdestruct. Implement a pause/disable mechanism instead.',
            })

        if 'delegatecall' in code:
            findings.append({
                'title': 'Use of delegatecall',
                'severity': 'high',
                'category': 'security',
                'description': 'delegatecall is powerful but dangerous. It executes code in the context of the calling contract.',
                'remediation': 'Ensure delegatecall is only used with trusted contracts and proper access control.',
            })

        if 'block.timestamp' in code or 'now' in code:
            findings.append({
                'title': 'Timestamp Dependence',
                'severity': 'low',
                'category': 'security',
                'description': 'Contract relies on block.timestamp which can be manipulated by miners within limits.',
                'remediation': 'Avoid using timestamps for critical logic. Use block numbers if possible.',
            })

        if self.loop_pattern.search(code):
            findings.append({
                'title': 'Unbounded Loop Risk',
                'severity': 'medium',
                'category': 'gas',
                'description': 'Loops can consume excessive gas or hit block gas limits if arrays grow too large.',
                'remediation': 'Implement pagination or limits on array sizes. Avoid loops over unbounded arrays.',
            })

        if 'onlyOwner' not in code and 'require(msg.sender' not in code:
            findings.append({
                'title': 'Missing Access Control',
                'severity': 'medium',
                'category': 'security',
                'description': 'Contract may lack proper access control mechanisms.',
                'remediation': 'Implement role-based access control using OpenZeppelin AccessControl or Ownable.',
            })

        # Gas optimizations
        if 'string ' in code and 'memory' in code:
            gas_optimizations.append({
                'title': 'String Storage Optimization',
                'description': 'Consider using bytes32 instead of string for fixed-length strings to save gas.',
                'impact': 'Medium',
            })

        if 'uint256' in code and len(self.small_int_pattern.findall(code)) > 3:
            gas_optimizations.append({
                'title': 'Pack Small Integers',
                'description': 'Multiple uint8/uint16 variables can be packed into a single storage slot.',
                'impact': 'High',
            })

        if self.public_array_pattern.search(code):
            gas_optimizations.append({
                'title': 'Public Array Gas Cost',
                'description': 'Public arrays generate expensive getter functions. Consider making them private with custom getters.',
                'impact': 'Medium',
            })

    def _analyze_rust(self, code: str, findings: List[Dict[str, Any]], gas_optimizations: List[Dict[str, Any]]) -> None:
        for op in self.rust_panic_ops:
            if op in code:
                findings.append({
                    'title': f'Potential Panic: {op}',
                    'severity': 'medium',
                    'category': 'quality',
                    'description': f'Code contains {op} which can cause runtime panics in smart contracts.',
                    'remediation': 'Use proper error handling with Result types and the ? operator.',
                })

        if 'wrapping_' in code or 'saturating_' in code:
            findings.append({
                'title': 'Explicit Overflow Handling',
                'severity': 'info',
                'category': 'quality',
                'description': 'Code uses explicit overflow handling methods.',
                'remediation': 'Ensure overflow behavior is intentional and documented.',
            })

        if 'Error' not in code and 'Result' not in code:
            findings.append({
                'title': 'Missing Error Handling',
                'severity': 'medium',
                'category': 'quality',
                'description': 'Contract appears to lack proper error type definitions.',
                'remediation': 'Define custom error types and use Result for fallible operations.',
            })

        if len(self.rust_clone_pattern.findall(code)) > 5:
            gas_optimizations.append({
                'title': 'Excessive Cloning',
                'description': 'Multiple .clone() calls detected. Consider using references or restructuring data flow.',
                'impact': 'Medium',
            })

    def calculate_complexity(self, code: str) -> str:
        """Bucket a weighted branch/loop/function count into Low/Medium/High."""
        functions = len(self.function_pattern.findall(code))
        conditions = len(self.condition_pattern.findall(code))
        loops = len(self.complexity_loop_pattern.findall(code))

        complexity_score = conditions + loops * 2 + functions

        if complexity_score < 20:
            return 'Low'
        if complexity_score < 50:
            return 'Medium'
        return 'High'

    def check_documentation(self, code: str) -> str:
        """Rate documentation from the comment-line to code-line ratio."""
        lines = [line.strip() for line in code.split('\n') if line.strip()]
        if not lines:
            return 'Poor'

        comment_lines = sum(1 for line in lines if self._is_comment_line(line))
        ratio = comment_lines / len(lines)

        if ratio > 0.2:
            return 'Good'
        if ratio > 0.1:
            return 'Partial'
        return 'Poor'

    @staticmethod
    def _is_comment_line(line: str) -> bool:
        return line.startswith(('//', '/*', '*')) or ' // ' in line
