#!/usr/bin/env python3
"""
DePIN / NodeOps Heuristic Analyzer

Keyword detection for decentralized physical infrastructure themes (node
operators, staking, rewards, escrow, oracles, ...). Each theme that shows up
in the source contributes an insight and, where the usual mitigation keyword
is absent, a finding in the ``depin`` category.
"""

import logging
import re
from typing import Any, Dict, List

from auditforge.models import AnalyzerResult, Vulnerability

logger = logging.getLogger(__name__)


def _mentions(code: str, *spellings: str) -> bool:
    """Case-sensitive: only the listed spellings count as a mitigation."""
    return any(spelling in code for spelling in spellings)


class DePINAnalyzer:
    """Detects DePIN risk themes by keyword and reports readiness flags."""

    name = 'depin'

    def __init__(self):
        # Substring matches on purpose: "block" hits escrow, "mapping" hits uptime
        self.theme_patterns = {
            'node_operator': re.compile(r'node|operator|validator|miner', re.IGNORECASE),
            'staking': re.compile(r'stake|staking|slash|unstake', re.IGNORECASE),
            'rewards': re.compile(r'reward|incentive|distribution|payout', re.IGNORECASE),
            'uptime': re.compile(r'uptime|availability|heartbeat|ping', re.IGNORECASE),
            'escrow': re.compile(r'escrow|lock|unlock|vesting', re.IGNORECASE),
            'oracle': re.compile(r'oracle|feed|price|data', re.IGNORECASE),
            'governance': re.compile(r'governance|vote|proposal|dao', re.IGNORECASE),
        }

    def detect_themes(self, code: str) -> List[str]:
        """Names of the themes present in ``code``, in check order."""
        return [theme for theme, pattern in self.theme_patterns.items() if pattern.search(code or '')]

    def analyze(self, code: str, language: str) -> AnalyzerResult:
        result = AnalyzerResult(analyzer=self.name)
        if not code or not code.strip():
            result.depin_ready = True
            result.node_ops_compatible = False
            return result

        themes = set(self.detect_themes(code))
        logger.debug(f"DePIN themes detected ({language}): {sorted(themes)}")

        findings: List[Dict[str, Any]] = []
        insights = result.insights
        recommendations = result.node_ops_recommendations

        if 'node_operator' in themes:
            insights.append({
                'category': 'Node Operations',
                'finding': 'Contract involves node operator functionality',
                'importance': 'high',
            })
            if not _mentions(code, 'register', 'Register'):
                findings.append({
                    'title': 'Missing Node Registration Mechanism',
                    'severity': 'medium',
                    'description': 'Node operator contracts should have explicit registration and verification mechanisms.',
                    'remediation': 'Implement a secure node registration function with proper validation and stake requirements.',
                })
            recommendations.append({
                'title': 'Node Monitoring',
                'description': 'Implement comprehensive node health monitoring and uptime tracking',
                'priority': 'high',
            })

        if 'staking' in themes:
            insights.append({
                'category': 'Staking',
                'finding': 'Contract implements staking mechanism',
                'importance': 'high',
            })
            if not _mentions(code, 'slash', 'Slash'):
                findings.append({
                    'title': 'Missing Slashing Mechanism',
                    'severity': 'medium',
                    'description': 'Staking contracts for node operators should include slashing for misbehavior.',
                    'remediation': 'Implement a fair and transparent slashing mechanism with proper governance.',
                })
            if not _mentions(code, 'cooldown', 'unbonding'):
                findings.append({
                    'title': 'Missing Unstaking Cooldown',
                    'severity': 'low',
                    'description': 'Staking contracts should have a cooldown period for unstaking to prevent abuse.',
                    'remediation': 'Add an unbonding/cooldown period before stakes can be withdrawn.',
                })

        if 'rewards' in themes:
            insights.append({
                'category': 'Rewards',
                'finding': 'Contract handles reward distribution',
                'importance': 'high',
            })
            # Emitted whenever the theme is present, mitigations are not inspected
            findings.append({
                'title': 'Reward Distribution Fairness',
                'severity': 'medium',
                'description': 'Ensure reward distribution is fair and resistant to gaming.',
                'remediation': 'Implement time-weighted rewards and prevent flash-loan attacks on reward calculations.',
            })
            recommendations.append({
                'title': 'Reward Transparency',
                'description': 'Make reward calculations transparent and auditable on-chain',
                'priority': 'medium',
            })

        if 'uptime' in themes:
            insights.append({
                'category': 'Uptime',
                'finding': 'Contract tracks node uptime or availability',
                'importance': 'medium',
            })

        if 'escrow' in themes:
            insights.append({
                'category': 'Escrow',
                'finding': 'Contract uses escrow mechanisms',
                'importance': 'high',
            })
            if not _mentions(code, 'timelock', 'TimeLock'):
                findings.append({
                    'title': 'Missing Timelock Protection',
                    'severity': 'high',
                    'description': 'Escrow contracts should use timelocks to protect against premature withdrawals.',
                    'remediation': 'Implement timelock mechanisms for escrow releases.',
                })

        if 'oracle' in themes:
            insights.append({
                'category': 'Oracle',
                'finding': 'Contract relies on oracle data',
                'importance': 'critical',
            })
            findings.append({
                'title': 'Oracle Manipulation Risk',
                'severity': 'high',
                'description': 'Contracts relying on oracles are vulnerable to data manipulation.',
                'remediation': 'Use multiple oracle sources, implement data validation, and add circuit breakers.',
            })

        if 'governance' in themes:
            insights.append({
                'category': 'Governance',
                'finding': 'Contract includes on-chain governance',
                'importance': 'medium',
            })

        result.vulnerabilities = [Vulnerability.from_dict(f, default_category='depin') for f in findings]
        result.depin_ready = not any(
            v.category == 'depin' and v.severity == 'high' for v in result.vulnerabilities
        )
        result.node_ops_compatible = any(i['category'] == 'Node Operations' for i in insights)
        return result
