"""Tests for auditforge.chat_service intent routing."""

import dataclasses
from unittest.mock import MagicMock

import pytest

from conftest import REENTRANT_WALLET, FakeLLMClient

from auditforge.audit_engine import AuditEngine
from auditforge.chat_service import (
    HELP_MESSAGE,
    ChatService,
    audit_suggestions,
    build_chat_prompt,
    help_suggestions,
    parse_user_intent,
)
from auditforge.etherscan_fetcher import EtherscanFetcher
from auditforge.llm_analyzer import LLMAnalyzer
from auditforge.models import AuditReport, Vulnerability


ADDRESS = "0xdAC17F958D2ee523a2206206994597C13D831ec7"


def _fetcher(details):
    fetcher = MagicMock()
    fetcher.SUPPORTED_NETWORKS = EtherscanFetcher.SUPPORTED_NETWORKS
    fetcher.fetch_complete_contract_details.return_value = details
    return fetcher


def _service(client=None, fetcher=None, history=None):
    client = client or FakeLLMClient(api_key="")
    engine = AuditEngine(llm_analyzer=LLMAnalyzer(client=FakeLLMClient(api_key="")))
    return ChatService(engine=engine, fetcher=fetcher, client=client, history=history)


class TestIntent:

    def test_address_and_flags(self):
        intent = parse_user_intent(f"Please audit {ADDRESS} and fix it")
        assert intent.address == ADDRESS
        assert intent.wants_audit
        assert intent.wants_fix
        assert not intent.wants_explanation
        assert not intent.has_file_attachment

    def test_explanation_and_attachment(self):
        intent = parse_user_intent("Explain the issues in the file I attached")
        assert intent.address is None
        assert intent.wants_explanation
        assert intent.has_file_attachment

    def test_prompt_includes_report(self):
        report = AuditReport.failure("x")
        prompt = build_chat_prompt("is it safe?", ADDRESS, {'contract_name': 'Tether', 'is_proxy': True}, report)
        assert 'The user asked: "is it safe?"' in prompt
        assert "- Name: Tether" in prompt
        assert "- Type: Proxy Contract" in prompt
        assert "- Security Score: 0/100" in prompt


class TestSuggestions:

    def setup_method(self):
        finding = Vulnerability.from_dict({'title': 'Reentrancy', 'severity': 'high'})
        self.report = dataclasses.replace(AuditReport.failure("x"), vulnerabilities=[finding])

    def test_help_leads_with_hinted_action(self):
        attach = help_suggestions(parse_user_intent("I want to upload a file"))
        assert attach[0] == 'Attach a contract file'
        explain = help_suggestions(parse_user_intent("what is a flash loan?"))
        assert explain[0] == 'Explain common vulnerabilities'
        assert sorted(attach) == sorted(explain)

    def test_audit_follow_ups_track_intent(self):
        intent = parse_user_intent("explain and fix this")
        assert audit_suggestions(intent, self.report, 'Fix it') == [
            'Fix it', 'Explain Reentrancy', 'Export a Markdown report',
        ]
        assert audit_suggestions(parse_user_intent("audit please"), self.report, 'Fix it') == ['Export a Markdown report']
        assert audit_suggestions(parse_user_intent("hello"), self.report, 'Fix it') == []

    def test_no_follow_ups_without_findings(self):
        intent = parse_user_intent("fix and explain")
        assert audit_suggestions(intent, AuditReport.failure("x"), 'Fix it') == []


class TestProcessMessage:

    @pytest.mark.asyncio
    async def test_help_without_address_or_file(self):
        response = await _service().process_message("hi there")
        assert response['message'] == HELP_MESSAGE
        assert response['data'] is None
        assert len(response['suggestions']) == 3

    @pytest.mark.asyncio
    async def test_attached_file_is_audited_and_recorded(self, fresh_history):
        service = _service(history=fresh_history)
        attachment = {'code': REENTRANT_WALLET, 'language': 'solidity', 'filename': 'Wallet.sol'}
        response = await service.process_message("can you fix this?", attachment)

        data = response['data']
        assert data['type'] == 'audit'
        assert data['filename'] == 'Wallet.sol'
        assert data['audit_result'].score == 90
        assert "Wallet.sol" in response['message']
        assert "90/100" in response['message']
        assert response['suggestions'][0] == 'Generate corrected contract code'

        records = fresh_history.list()
        assert len(records) == 1
        assert records[0].contract_name == 'Wallet.sol'

    @pytest.mark.asyncio
    async def test_address_with_verified_source(self):
        fetcher = _fetcher({
            'success': True,
            'source_code': REENTRANT_WALLET,
            'contract_name': 'Wallet',
            'chain_name': 'Ethereum Mainnet',
        })
        response = await _service(fetcher=fetcher).process_message(f"audit {ADDRESS}")

        fetcher.fetch_complete_contract_details.assert_called_once_with(ADDRESS, 'ethereum')
        data = response['data']
        assert data['type'] == 'audit'
        assert data['address'] == ADDRESS
        assert data['audit_result'].score == 90
        assert "**Wallet** analyzed successfully" in response['message']
        assert "Potential Reentrancy Vulnerability" in response['message']

    @pytest.mark.asyncio
    async def test_address_without_source(self):
        fetcher = _fetcher({'success': True, 'source_code': None, 'errors': {'source': 'not verified'}})
        response = await _service(fetcher=fetcher).process_message(ADDRESS, chain='bsc')

        data = response['data']
        assert data['type'] == 'basic_info'
        assert data['explorer_url'] == f"https://bscscan.com/address/{ADDRESS}"
        assert "BSC Mainnet" in response['message']

    @pytest.mark.asyncio
    async def test_unsupported_chain(self):
        fetcher = _fetcher({})
        response = await _service(fetcher=fetcher).process_message(ADDRESS, chain='solana')
        assert response['message'] == "❌ Unsupported chain: solana"
        fetcher.fetch_complete_contract_details.assert_not_called()

    @pytest.mark.asyncio
    async def test_errors_become_a_message(self):
        fetcher = _fetcher({})
        fetcher.fetch_complete_contract_details.side_effect = RuntimeError("explorer down")
        response = await _service(fetcher=fetcher).process_message(ADDRESS)
        assert response['message'] == "❌ An error occurred: explorer down"
        assert response['suggestions'] == ['Try again']

    @pytest.mark.asyncio
    async def test_llm_commentary_appended(self):
        client = FakeLLMClient(response="Use a reentrancy guard.")
        attachment = {'code': REENTRANT_WALLET, 'language': 'solidity', 'filename': 'Wallet.sol'}
        response = await _service(client=client).process_message("check this", attachment)
        assert "💡 **AI Recommendations:**\nUse a reentrancy guard." in response['message']
        assert 'Security Score: 90/100' in client.calls[0]['user']


class TestCommentary:

    @pytest.mark.asyncio
    async def test_none_without_key(self):
        assert await _service().generate_chat_response("hi") is None

    @pytest.mark.asyncio
    async def test_none_on_client_error(self):
        service = _service(client=FakeLLMClient(error=RuntimeError("boom")))
        assert await service.generate_chat_response("hi") is None

    @pytest.mark.asyncio
    async def test_generate_fix_requires_key(self):
        result = await _service().generate_fix(REENTRANT_WALLET, 'solidity', [])
        assert result['success'] is False
