"""
Shared test fixtures for the AuditForge test suite.

Provides sample Solidity and Rust contracts, a scripted LLM client, stub
analyzers for the engine, a clean environment and AuditHistory reset helpers.
"""

import asyncio
import io
from pathlib import Path
from unittest.mock import MagicMock

import pytest
from rich.console import Console

from auditforge.audit_history import AuditHistory
from auditforge.config_manager import ENV_OVERRIDES, AuditForgeConfig


# ── Sample contract source ──────────────────────────────────────

# No DePIN keywords, locked pragma, owner check present: only the
# low-level value call is worth reporting.
REENTRANT_WALLET = """\
pragma solidity 0.8.20;

contract Wallet {
    address public owner;

    function withdraw(uint256 amount) external {
        require(msg.sender == owner, "not owner");
        (bool ok, ) = msg.sender.call{value: amount}("");
        require(ok, "transfer failed");
    }
}
"""

ORACLE_CONSUMER = """\
pragma solidity 0.8.20;

contract Consumer {
    address public owner;
    address public oracle;

    function setOracle(address next) external {
        require(msg.sender == owner, "not owner");
        oracle = next;
    }
}
"""

LEGACY_VAULT = """\
pragma solidity ^0.5.0;

contract Legacy {
    address[] public users;
    uint256 total;

    function kill() public {
        selfdestruct(msg.sender);
    }

    function sweep() public {
        for (uint256 i = 0; i < users.length; i++) {
            total += i;
        }
        uint256 t = now;
    }
}
"""

SAMPLE_RUST = """\
use std::collections::HashMap;

pub fn credit(balances: &mut HashMap<String, u64>, who: String, amount: u64) {
    let current = balances.get(&who).copied().unwrap();
    balances.insert(who, current.wrapping_add(amount));
}
"""


# ── Test doubles ────────────────────────────────────────────────


class FakeLLMClient:
    """Scripted stand-in for ``LLMClient``.

    ``response`` is returned from ``complete``; ``error`` is raised instead
    when set; ``delay`` sleeps first so timeouts can be exercised.
    """

    def __init__(self, response="", api_key="sk-test-fake-key-12345", model="gpt-test",
                 error=None, delay=0.0):
        self.api_key = api_key
        self.model = model
        self.response = response
        self.error = error
        self.delay = delay
        self.calls = []

    @property
    def is_configured(self):
        return bool(self.api_key)

    async def complete(self, system_prompt, user_prompt, temperature=0.3, max_tokens=2000):
        self.calls.append({
            'system': system_prompt,
            'user': user_prompt,
            'temperature': temperature,
            'max_tokens': max_tokens,
        })
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.response


class StubAnalyzer:
    """Analyzer double returning a canned result or raising."""

    def __init__(self, result=None, error=None):
        self.result = result if result is not None else {'vulnerabilities': []}
        self.error = error
        self.calls = []

    def analyze(self, *args):
        self.calls.append(args)
        if self.error is not None:
            raise self.error
        return self.result


class AsyncStubAnalyzer(StubAnalyzer):
    """Async analyzer double that settles after ``delay`` seconds."""

    def __init__(self, result=None, error=None, delay=0.0):
        super().__init__(result, error)
        self.delay = delay

    async def analyze(self, *args):
        await asyncio.sleep(self.delay)
        return StubAnalyzer.analyze(self, *args)


# ── Fixtures ────────────────────────────────────────────────────


@pytest.fixture
def clean_env(monkeypatch):
    """Remove every environment variable ConfigManager reads."""
    for env_name, _ in ENV_OVERRIDES:
        monkeypatch.delenv(env_name, raising=False)


@pytest.fixture
def mock_env_api_keys(monkeypatch, clean_env):
    """Set fake API keys in environment so ConfigManager doesn't read real ones."""
    monkeypatch.setenv("AIML_API_KEY", "sk-test-fake-aiml-key-12345")
    monkeypatch.setenv("ETHERSCAN_API_KEY", "test-fake-etherscan-key")


@pytest.fixture
def quiet_console():
    """Rich console writing into a buffer; read it back with ``.file.getvalue()``."""
    return Console(file=io.StringIO(), width=120, force_terminal=False)


@pytest.fixture
def mock_config():
    """Return a real AuditForgeConfig with fake keys and short timeouts."""
    return AuditForgeConfig(
        llm_api_key="",
        etherscan_api_key="test-fake-etherscan-key",
        llm_timeout=5,
        audit_timeout=10,
        request_timeout=7,
        history_limit=5,
    )


@pytest.fixture
def mock_config_manager(mock_config):
    """Return a MagicMock ConfigManager with a real config attribute."""
    mgr = MagicMock()
    mgr.config = mock_config
    mgr.save_config = MagicMock(return_value=True)
    return mgr


@pytest.fixture
def fresh_history():
    """Reset the AuditHistory singleton and return a fresh in-memory instance."""
    AuditHistory.reset()
    history = AuditHistory.get_instance(capacity=5)
    yield history
    AuditHistory.reset()


@pytest.fixture
def fake_llm():
    return FakeLLMClient()


@pytest.fixture
def tmp_contract(tmp_path):
    """Write the reentrant wallet to a temporary .sol file."""
    path = Path(tmp_path) / "Wallet.sol"
    path.write_text(REENTRANT_WALLET)
    return path
