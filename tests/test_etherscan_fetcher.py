"""Tests for auditforge.etherscan_fetcher.

All HTTP calls are mocked at ``requests.get``.
"""

import json
import unittest
from unittest.mock import MagicMock, patch

import requests

from auditforge.config_manager import AuditForgeConfig
from auditforge.etherscan_fetcher import EtherscanFetcher, flatten_source_code


ADDRESS = "0x1234567890abcdef1234567890abcdef12345678"

ETHERSCAN_SOURCE_RESPONSE = {
    "status": "1",
    "message": "OK",
    "result": [{
        "SourceCode": "pragma solidity ^0.8.0;\n\ncontract Token {\n    string public name;\n}",
        "ABI": '[{"type":"function","name":"name"}]',
        "ContractName": "Token",
        "CompilerVersion": "v0.8.19+commit.7dd6d404",
        "OptimizationUsed": "1",
        "Runs": "200",
        "ConstructorArguments": "",
        "EVMVersion": "Default",
        "Library": "",
        "LicenseType": "MIT",
        "Proxy": "1",
        "Implementation": "0xaabbccddaabbccddaabbccddaabbccddaabbccdd",
        "SwarmSource": "",
    }]
}

ETHERSCAN_ABI_RESPONSE = {
    "status": "1",
    "message": "OK",
    "result": '[{"type":"function","name":"name"}]',
}

ETHERSCAN_CREATOR_RESPONSE = {
    "status": "1",
    "message": "OK",
    "result": [{
        "contractAddress": ADDRESS,
        "contractCreator": "0x00000000000000000000000000000000000000c0",
        "txHash": "0xdeadbeef",
    }]
}

NOT_VERIFIED_RESPONSE = {
    "status": "0",
    "message": "NOTOK",
    "result": "Contract source code not verified",
}

MULTI_FILE_SOURCE = "{" + json.dumps({
    "language": "Solidity",
    "sources": {
        "contracts/Token.sol": {"content": "contract Token is IERC20 {}"},
        "contracts/IERC20.sol": {"content": "interface IERC20 {}"},
    },
}) + "}"


def _response(payload):
    response = MagicMock()
    response.json.return_value = payload
    response.raise_for_status.return_value = None
    return response


def _config_manager():
    manager = MagicMock()
    manager.config = AuditForgeConfig(etherscan_api_key="test-key", request_timeout=7)
    return manager


class TestAddressParsing(unittest.TestCase):

    def setUp(self):
        self.fetcher = EtherscanFetcher(_config_manager())

    def test_is_etherscan_address(self):
        self.assertTrue(EtherscanFetcher.is_etherscan_address(ADDRESS))
        self.assertFalse(EtherscanFetcher.is_etherscan_address("0x1234"))
        self.assertFalse(EtherscanFetcher.is_etherscan_address(""))
        self.assertFalse(EtherscanFetcher.is_etherscan_address(ADDRESS + "ff"))

    def test_bare_address_defaults_to_ethereum(self):
        self.assertEqual(self.fetcher.parse_explorer_url(ADDRESS), ('ethereum', ADDRESS))

    def test_explorer_urls(self):
        cases = {
            f"https://etherscan.io/address/{ADDRESS}#code": 'ethereum',
            f"https://www.bscscan.com/address/{ADDRESS}": 'bsc',
            f"polygonscan.com/address/{ADDRESS}": 'polygon',
            f"https://optimistic.etherscan.io/address/{ADDRESS}": 'optimism',
            f"https://basescan.org/address/{ADDRESS}": 'base',
            f"https://unknown-explorer.xyz/address/{ADDRESS}": 'ethereum',
        }
        for url, network in cases.items():
            self.assertEqual(self.fetcher.parse_explorer_url(url), (network, ADDRESS), url)

    def test_invalid_input(self):
        self.assertEqual(self.fetcher.parse_explorer_url("https://etherscan.io/tx/0xabc"), (None, None))
        self.assertEqual(self.fetcher.parse_explorer_url("hello"), (None, None))

    def test_supported_chains(self):
        chains = self.fetcher.get_supported_chains()
        self.assertEqual(len(chains), 8)
        self.assertEqual(chains[0], {'id': 'ethereum', 'name': 'Ethereum Mainnet', 'explorer': 'https://etherscan.io'})


class TestFetching(unittest.TestCase):

    def setUp(self):
        self.fetcher = EtherscanFetcher(_config_manager())

    @patch('auditforge.etherscan_fetcher.requests.get')
    def test_fetch_abi(self, mock_get):
        mock_get.return_value = _response(ETHERSCAN_ABI_RESPONSE)
        result = self.fetcher.fetch_contract_abi(ADDRESS, 'polygon')

        self.assertTrue(result['success'])
        self.assertEqual(result['abi'], [{'type': 'function', 'name': 'name'}])
        args, kwargs = mock_get.call_args
        self.assertEqual(args[0], 'https://api.polygonscan.com/api')
        self.assertEqual(kwargs['params']['action'], 'getabi')
        self.assertEqual(kwargs['params']['apikey'], 'test-key')
        self.assertEqual(kwargs['timeout'], 7)

    @patch('auditforge.etherscan_fetcher.requests.get')
    def test_api_error_status(self, mock_get):
        mock_get.return_value = _response(NOT_VERIFIED_RESPONSE)
        result = self.fetcher.fetch_contract_abi(ADDRESS)
        self.assertFalse(result['success'])
        self.assertEqual(result['error'], 'Contract source code not verified')

    @patch('auditforge.etherscan_fetcher.requests.get')
    def test_rate_limit_message(self, mock_get):
        mock_get.return_value = _response({"status": "0", "message": "NOTOK", "result": "Max rate limit reached"})
        result = self.fetcher.fetch_contract_source(ADDRESS)
        self.assertFalse(result['success'])
        self.assertIn('rate limit exceeded', result['error'])

    @patch('auditforge.etherscan_fetcher.requests.get')
    def test_invalid_key_message(self, mock_get):
        mock_get.return_value = _response({"status": "0", "message": "NOTOK", "result": "Invalid API Key"})
        result = self.fetcher.fetch_contract_creator(ADDRESS)
        self.assertFalse(result['success'])
        self.assertIn('Invalid Etherscan API key', result['error'])

    @patch('auditforge.etherscan_fetcher.requests.get')
    def test_network_error(self, mock_get):
        mock_get.side_effect = requests.exceptions.ConnectionError("connection refused")
        result = self.fetcher.fetch_contract_source(ADDRESS)
        self.assertFalse(result['success'])
        self.assertIn('connection refused', result['error'])

    @patch('auditforge.etherscan_fetcher.requests.get')
    def test_http_error(self, mock_get):
        response = _response({})
        response.raise_for_status.side_effect = requests.exceptions.HTTPError("502 Bad Gateway")
        mock_get.return_value = response
        result = self.fetcher.fetch_contract_abi(ADDRESS)
        self.assertFalse(result['success'])
        self.assertIn('502', result['error'])

    @patch('auditforge.etherscan_fetcher.requests.get')
    def test_fetch_source(self, mock_get):
        mock_get.return_value = _response(ETHERSCAN_SOURCE_RESPONSE)
        result = self.fetcher.fetch_contract_source(ADDRESS)
        self.assertTrue(result['success'])
        self.assertEqual(result['contract_name'], 'Token')
        self.assertEqual(result['compiler_version'], 'v0.8.19+commit.7dd6d404')
        self.assertEqual(result['proxy'], '1')
        self.assertIn('contract Token', result['source_code'])

    @patch('auditforge.etherscan_fetcher.requests.get')
    def test_fetch_creator(self, mock_get):
        mock_get.return_value = _response(ETHERSCAN_CREATOR_RESPONSE)
        result = self.fetcher.fetch_contract_creator(ADDRESS)
        self.assertTrue(result['success'])
        self.assertEqual(result['tx_hash'], '0xdeadbeef')
        self.assertEqual(mock_get.call_args.kwargs['params']['contractaddresses'], ADDRESS)

    @patch('auditforge.etherscan_fetcher.requests.get')
    def test_verification_status(self, mock_get):
        mock_get.return_value = _response({"status": "1", "message": "OK", "result": "Pass - Verified"})
        result = self.fetcher.check_verification_status("guid-1")
        self.assertEqual(result['result'], 'Pass - Verified')
        self.assertEqual(mock_get.call_args.kwargs['params']['action'], 'checkverifystatus')

        self.fetcher.check_proxy_verification("guid-2")
        self.assertEqual(mock_get.call_args.kwargs['params']['action'], 'checkproxyverification')


class TestCompleteDetails(unittest.TestCase):

    def setUp(self):
        self.fetcher = EtherscanFetcher(_config_manager())

    @staticmethod
    def _by_action(responses):
        def fake_get(url, params=None, timeout=None):
            return _response(responses[params['action']])
        return fake_get

    @patch('auditforge.etherscan_fetcher.requests.get')
    def test_verified_proxy(self, mock_get):
        mock_get.side_effect = self._by_action({
            'getabi': ETHERSCAN_ABI_RESPONSE,
            'getsourcecode': ETHERSCAN_SOURCE_RESPONSE,
            'getcontractcreation': ETHERSCAN_CREATOR_RESPONSE,
        })
        details = self.fetcher.fetch_complete_contract_details(ADDRESS)

        self.assertTrue(details['success'])
        self.assertTrue(details['is_verified'])
        self.assertTrue(details['is_proxy'])
        self.assertEqual(details['chain_name'], 'Ethereum Mainnet')
        self.assertEqual(details['explorer_url'], f"https://etherscan.io/address/{ADDRESS}")
        self.assertEqual(details['creator'], '0x00000000000000000000000000000000000000c0')
        self.assertEqual(details['errors'], {'abi': None, 'source': None, 'creator': None})

    @patch('auditforge.etherscan_fetcher.requests.get')
    def test_unverified_contract(self, mock_get):
        mock_get.side_effect = self._by_action({
            'getabi': NOT_VERIFIED_RESPONSE,
            'getsourcecode': NOT_VERIFIED_RESPONSE,
            'getcontractcreation': ETHERSCAN_CREATOR_RESPONSE,
        })
        details = self.fetcher.fetch_complete_contract_details(ADDRESS)

        self.assertTrue(details['success'])
        self.assertFalse(details['is_verified'])
        self.assertIsNone(details['source_code'])
        self.assertIsNone(details['abi'])
        self.assertFalse(details['is_proxy'])
        self.assertEqual(details['errors']['source'], 'Contract source code not verified')
        self.assertIsNone(details['errors']['creator'])


class TestFlattenSource(unittest.TestCase):

    def test_plain_source_unchanged(self):
        self.assertEqual(flatten_source_code("contract A {}"), "contract A {}")
        self.assertEqual(flatten_source_code(None), "")

    def test_standard_json_input(self):
        flattened = flatten_source_code(MULTI_FILE_SOURCE)
        self.assertEqual(
            flattened,
            "// File: contracts/Token.sol\ncontract Token is IERC20 {}\n\n"
            "// File: contracts/IERC20.sol\ninterface IERC20 {}",
        )

    def test_single_brace_json(self):
        source = json.dumps({"sources": {"A.sol": {"content": "contract A {}"}}})
        self.assertEqual(flatten_source_code(source), "// File: A.sol\ncontract A {}")

    def test_malformed_json_returned_as_is(self):
        self.assertEqual(flatten_source_code("{not json"), "{not json")
