#!/usr/bin/env python3
"""
Etherscan Contract Fetcher

Fetches ABI, verified source code and creator information from
Etherscan-compatible explorer APIs across several EVM chains. Every public
call returns a dict with ``success``; failures carry ``error`` instead of
raising.
"""

import json
import logging
import re
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlparse

import requests

from auditforge.config_manager import ConfigManager

logger = logging.getLogger(__name__)

ADDRESS_PATTERN = re.compile(r'^0x[a-fA-F0-9]{40}$')


class EtherscanError(Exception):
    """Explorer API answered with an error status."""


class EtherscanFetcher:
    """Contract data fetcher supporting multiple EVM chains."""

    SUPPORTED_NETWORKS = {
        'ethereum': {
            'name': 'Ethereum Mainnet',
            'api_url': 'https://api.etherscan.io/api',
            'explorer_url': 'https://etherscan.io',
        },
        'goerli': {
            'name': 'Goerli Testnet',
            'api_url': 'https://api-goerli.etherscan.io/api',
            'explorer_url': 'https://goerli.etherscan.io',
        },
        'sepolia': {
            'name': 'Sepolia Testnet',
            'api_url': 'https://api-sepolia.etherscan.io/api',
            'explorer_url': 'https://sepolia.etherscan.io',
        },
        'bsc': {
            'name': 'BSC Mainnet',
            'api_url': 'https://api.bscscan.com/api',
            'explorer_url': 'https://bscscan.com',
        },
        'polygon': {
            'name': 'Polygon Mainnet',
            'api_url': 'https://api.polygonscan.com/api',
            'explorer_url': 'https://polygonscan.com',
        },
        'arbitrum': {
            'name': 'Arbitrum One',
            'api_url': 'https://api.arbiscan.io/api',
            'explorer_url': 'https://arbiscan.io',
        },
        'optimism': {
            'name': 'Optimism',
            'api_url': 'https://api-optimistic.etherscan.io/api',
            'explorer_url': 'https://optimistic.etherscan.io',
        },
        'base': {
            'name': 'Base',
            'api_url': 'https://api.basescan.org/api',
            'explorer_url': 'https://basescan.org',
        },
    }

    # Explorer domain -> network
    EXPLORER_DOMAINS = {
        'etherscan.io': 'ethereum',
        'goerli.etherscan.io': 'goerli',
        'sepolia.etherscan.io': 'sepolia',
        'bscscan.com': 'bsc',
        'polygonscan.com': 'polygon',
        'arbiscan.io': 'arbitrum',
        'optimistic.etherscan.io': 'optimism',
        'basescan.org': 'base',
    }

    def __init__(self, config_manager: Optional[ConfigManager] = None):
        self.config_manager = config_manager or ConfigManager()
        config = self.config_manager.config
        self.api_key = config.etherscan_api_key
        self.fallback_url = config.etherscan_base_url
        self.request_timeout = config.request_timeout

    @staticmethod
    def is_etherscan_address(address: str) -> bool:
        """Check if the input is a valid Ethereum-style address."""
        return bool(address) and bool(ADDRESS_PATTERN.match(address))

    def parse_explorer_url(self, url_or_address: str) -> Tuple[Optional[str], Optional[str]]:
        """
        Parse an explorer URL or address and return (network, address).

        Supports URLs like https://etherscan.io/address/0x123...#code or a bare
        address (assumed to be on ethereum).

        Returns:
            (network, address), or (None, None) if invalid
        """
        url_or_address = (url_or_address or '').strip()
        if self.is_etherscan_address(url_or_address):
            return ('ethereum', url_or_address)

        url = url_or_address
        if not url.startswith(('http://', 'https://')):
            url = 'https://' + url
        parsed = urlparse(url)
        domain = parsed.netloc.lower()
        if domain.startswith('www.'):
            domain = domain[4:]

        address_match = re.search(r'/address/(0x[a-fA-F0-9]{40})', parsed.path)
        if not address_match:
            return (None, None)

        return (self.EXPLORER_DOMAINS.get(domain, 'ethereum'), address_match.group(1))

    def get_supported_chains(self) -> List[Dict[str, str]]:
        return [
            {'id': key, 'name': network['name'], 'explorer': network['explorer_url']}
            for key, network in self.SUPPORTED_NETWORKS.items()
        ]

    def _api_url(self, chain: str) -> str:
        network = self.SUPPORTED_NETWORKS.get(chain)
        return network['api_url'] if network else self.fallback_url

    def _request(self, chain: str, params: Dict[str, str]) -> Dict[str, Any]:
        """GET the explorer API and return its decoded JSON body."""
        query = dict(params)
        query['apikey'] = self.api_key or ''
        response = requests.get(self._api_url(chain), params=query, timeout=self.request_timeout)
        response.raise_for_status()
        return response.json()

    @staticmethod
    def _raise_for_api_status(data: Dict[str, Any], default: str) -> None:
        if str(data.get('status')) != '0':
            return
        result = data.get('result')
        message = result if isinstance(result, str) and result else data.get('message') or default
        lowered = message.lower()
        if 'rate limit' in lowered:
            raise EtherscanError('Etherscan API rate limit exceeded. Please try again later.')
        if 'invalid api key' in lowered:
            raise EtherscanError('Invalid Etherscan API key. Please check your configuration.')
        raise EtherscanError(message)

    def fetch_contract_abi(self, address: str, chain: str = 'ethereum') -> Dict[str, Any]:
        """Fetch and decode a verified contract's ABI."""
        try:
            data = self._request(chain, {'module': 'contract', 'action': 'getabi', 'address': address})
            self._raise_for_api_status(data, 'Failed to fetch ABI')
            return {
                'success': True,
                'abi': json.loads(data['result']),
                'address': address,
                'chain': chain,
            }
        except (requests.RequestException, EtherscanError, ValueError, KeyError, TypeError) as e:
            logger.error(f"Error fetching ABI for {address} on {chain}: {e}")
            return {'success': False, 'error': str(e)}

    def fetch_contract_source(self, address: str, chain: str = 'ethereum') -> Dict[str, Any]:
        """Fetch verified source code and compiler metadata."""
        try:
            data = self._request(chain, {'module': 'contract', 'action': 'getsourcecode', 'address': address})
            self._raise_for_api_status(data, 'Failed to fetch source code')
            result = data['result'][0]
            return {
                'success': True,
                'source_code': result.get('SourceCode', ''),
                'contract_name': result.get('ContractName', ''),
                'compiler_version': result.get('CompilerVersion', ''),
                'optimization_used': result.get('OptimizationUsed', ''),
                'runs': result.get('Runs', ''),
                'constructor_arguments': result.get('ConstructorArguments', ''),
                'evm_version': result.get('EVMVersion', ''),
                'library': result.get('Library', ''),
                'license_type': result.get('LicenseType', ''),
                'proxy': result.get('Proxy', ''),
                'implementation': result.get('Implementation', ''),
                'swarm_source': result.get('SwarmSource', ''),
                'address': address,
                'chain': chain,
            }
        except (requests.RequestException, EtherscanError, ValueError, KeyError, IndexError, TypeError, AttributeError) as e:
            logger.error(f"Error fetching source code for {address} on {chain}: {e}")
            return {'success': False, 'error': str(e)}

    def fetch_contract_creator(self, address: str, chain: str = 'ethereum') -> Dict[str, Any]:
        """Fetch the creator address and creation transaction."""
        try:
            data = self._request(chain, {
                'module': 'contract',
                'action': 'getcontractcreation',
                'contractaddresses': address,
            })
            self._raise_for_api_status(data, 'Failed to fetch creator info')
            result = data['result'][0]
            return {
                'success': True,
                'contract_address': result.get('contractAddress'),
                'contract_creator': result.get('contractCreator'),
                'tx_hash': result.get('txHash'),
                'chain': chain,
            }
        except (requests.RequestException, EtherscanError, ValueError, KeyError, IndexError, TypeError, AttributeError) as e:
            logger.error(f"Error fetching creator for {address} on {chain}: {e}")
            return {'success': False, 'error': str(e)}

    def _check_status(self, action: str, guid: str, chain: str) -> Dict[str, Any]:
        try:
            data = self._request(chain, {'module': 'contract', 'action': action, 'guid': guid})
            return {
                'success': True,
                'status': data.get('status'),
                'result': data.get('result'),
                'chain': chain,
            }
        except (requests.RequestException, ValueError) as e:
            logger.error(f"Error checking {action} for {guid} on {chain}: {e}")
            return {'success': False, 'error': str(e)}

    def check_verification_status(self, guid: str, chain: str = 'ethereum') -> Dict[str, Any]:
        return self._check_status('checkverifystatus', guid, chain)

    def check_proxy_verification(self, guid: str, chain: str = 'ethereum') -> Dict[str, Any]:
        return self._check_status('checkproxyverification', guid, chain)

    def fetch_complete_contract_details(self, address: str, chain: str = 'ethereum') -> Dict[str, Any]:
        """ABI, source and creator combined; each part may fail independently."""
        abi_data = self.fetch_contract_abi(address, chain)
        source_data = self.fetch_contract_source(address, chain)
        creator_data = self.fetch_contract_creator(address, chain)

        source_ok = source_data['success']
        network = self.SUPPORTED_NETWORKS.get(chain)

        return {
            'success': True,
            'address': address,
            'chain': chain,
            'chain_name': network['name'] if network else 'Unknown',
            'explorer_url': f"{network['explorer_url']}/address/{address}" if network else None,
            'is_verified': bool(source_ok and source_data.get('source_code')),
            'abi': abi_data.get('abi') if abi_data['success'] else None,
            'source_code': source_data.get('source_code') if source_ok else None,
            'contract_name': source_data.get('contract_name') if source_ok else None,
            'compiler_version': source_data.get('compiler_version') if source_ok else None,
            'optimization_used': source_data.get('optimization_used') if source_ok else None,
            'license_type': source_data.get('license_type') if source_ok else None,
            'is_proxy': source_data.get('proxy') == '1' if source_ok else False,
            'implementation': source_data.get('implementation') if source_ok else None,
            'creator': creator_data.get('contract_creator') if creator_data['success'] else None,
            'creation_tx_hash': creator_data.get('tx_hash') if creator_data['success'] else None,
            'errors': {
                'abi': None if abi_data['success'] else abi_data.get('error'),
                'source': None if source_ok else source_data.get('error'),
                'creator': None if creator_data['success'] else creator_data.get('error'),
            },
        }


def flatten_source_code(source_code: str) -> str:
    """Join a Standard JSON Input (multi-file) source into one auditable text.

    Plain single-file sources are returned unchanged.
    """
    text = (source_code or '').strip()
    if not text.startswith('{'):
        return source_code or ''

    # Explorers wrap Standard JSON Input in an extra pair of braces
    if text.startswith('{{') and text.endswith('}}'):
        text = text[1:-1]
    try:
        source_json = json.loads(text)
    except json.JSONDecodeError:
        return source_code

    sources = source_json.get('sources') if isinstance(source_json, dict) else None
    if not isinstance(sources, dict):
        return source_code

    parts = []
    for path, entry in sources.items():
        content = entry.get('content', '') if isinstance(entry, dict) else ''
        parts.append(f"// File: {path}\n{content}")
    return "\n\n".join(parts)
