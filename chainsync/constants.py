"""Chain, contract and asset metadata for the ChainSync settlement network."""

from typing import Any, Dict, Optional

NATIVE_PLACEHOLDER = '0x0000000000000000000000000000000000000000'

# Maximum uint256, used for unlimited approvals
MAX_UINT256 = 2**256 - 1

DEFAULT_TOKEN_DECIMALS = 18

CHAIN_METADATA: Dict[int, Dict[str, Any]] = {
    1: {
        'name': 'Ethereum',
        'symbol': 'ETH',
        'explorer': 'https://etherscan.io',
        'native_decimals': 18,
    },
    137: {
        'name': 'Polygon',
        'symbol': 'MATIC',
        'explorer': 'https://polygonscan.com',
        'native_decimals': 18,
    },
    56: {
        'name': 'BNB Chain',
        'symbol': 'BNB',
        'explorer': 'https://bscscan.com',
        'native_decimals': 18,
    },
    42161: {
        'name': 'Arbitrum',
        'symbol': 'ETH',
        'explorer': 'https://arbiscan.io',
        'native_decimals': 18,
    },
    250: {
        'name': 'Fantom',
        'symbol': 'FTM',
        'explorer': 'https://ftmscan.com',
        'native_decimals': 18,
    },
    43114: {
        'name': 'Avalanche',
        'symbol': 'AVAX',
        'explorer': 'https://snowtrace.io',
        'native_decimals': 18,
    },
    1088: {
        'name': 'Metis',
        'symbol': 'METIS',
        'explorer': 'https://andromeda-explorer.metis.io',
        'native_decimals': 18,
    },
    8453: {
        'name': 'Base',
        'symbol': 'ETH',
        'explorer': 'https://basescan.org',
        'native_decimals': 18,
    },
    7000: {
        'name': 'ZetaChain',
        'symbol': 'ZETA',
        'explorer': 'https://explorer.zetachain.com',
        'native_decimals': 18,
    },
    11155111: {
        'name': 'Sepolia',
        'symbol': 'ETH',
        'explorer': 'https://sepolia.etherscan.io',
        'native_decimals': 18,
    },
    421614: {
        'name': 'Arbitrum Sepolia',
        'symbol': 'ETH',
        'explorer': 'https://sepolia.arbiscan.io',
        'native_decimals': 18,
    },
    31337: {
        'name': 'Hardhat',
        'symbol': 'ETH',
        'explorer': '',
        'native_decimals': 18,
    },
}

# ChainSync deployments per network
CONTRACT_ADDRESSES: Dict[int, Dict[str, str]] = {
    1: {
        'cst_token': '0xD2eb148c2ccb54e88F21529Aec74dd7ce2232b06',
        'chain_sync': '0x692Eb018Ac9E62999ae984c05a877A01B9959570',
        'validator_registry': '0x592C950515DAC7502225F4a461774abE7df0dBFD',
    },
    31337: {
        'cst_token': '0x610178dA211FEF7D417bC0e6FeD39F05609AD788',
        'chain_sync': '0xB7f8BC63BbcaD18155201308C8f3540b07f84F5e',
        'validator_registry': '0xA51c1fc2f0D1a1b8494Ed1FE312d7C3a78Ed91C0',
    },
    11155111: {
        'cst_token': '0xd62684427bc5a8b7eaDa01E3484f1Fa8d4bcDacD',
        'chain_sync': '0x67EB5641679A476CB408E201ed3CB087a2422352',
        'validator_registry': '0xF2332CAeD0567DCF513359FD2788b3a63aC36175',
    },
    421614: {
        'cst_token': '0xd62684427bc5a8b7eaDa01E3484f1Fa8d4bcDacD',
        'chain_sync': '0x67EB5641679A476CB408E201ed3CB087a2422352',
        'validator_registry': '0xF2332CAeD0567DCF513359FD2788b3a63aC36175',
    },
}

# USDC and USDT are the only supported assets that use 6 decimals
SUPPORTED_ASSETS: Dict[str, Dict[str, Any]] = {
    'CST': {
        'name': 'ChainSync Token',
        'decimals': 18,
        'address': '0xD2eb148c2ccb54e88F21529Aec74dd7ce2232b06',
    },
    'ETH': {
        'name': 'Ethereum',
        'decimals': 18,
        'address': NATIVE_PLACEHOLDER,
    },
    'USDC': {
        'name': 'USD Coin',
        'decimals': 6,
        'address': '0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48',
    },
    'DAI': {
        'name': 'Dai Stablecoin',
        'decimals': 18,
        'address': '0x6B175474E89094C44Da98b954EedeAC495271d0F',
    },
    'USDT': {
        'name': 'Tether USD',
        'decimals': 6,
        'address': '0xdAC17F958D2ee523a2206206994597C13D831ec7',
    },
}

# Fee shown on the transfer form before the backend quote arrives
DISPLAY_FEE_RATE = '0.001'


def get_chain(chain_id: int) -> Optional[Dict[str, Any]]:
    return CHAIN_METADATA.get(chain_id)


def chain_name(chain_id: int) -> str:
    details = CHAIN_METADATA.get(chain_id)
    return details['name'] if details else 'Unknown'


def get_contract_addresses(chain_id: int) -> Optional[Dict[str, str]]:
    return CONTRACT_ADDRESSES.get(chain_id)


def get_cst_token_address(chain_id: int) -> str:
    """CST is deployed per network; fall back to the Ethereum mainnet token."""
    addresses = get_contract_addresses(chain_id) or get_contract_addresses(1)
    return addresses['cst_token']


def explorer_tx_url(chain_id: int, tx_hash: str) -> Optional[str]:
    details = CHAIN_METADATA.get(chain_id)
    if not details or not details['explorer'] or not tx_hash:
        return None
    return f"{details['explorer']}/tx/{tx_hash}"


def get_asset(symbol: Optional[str]) -> Optional[Dict[str, Any]]:
    if not symbol:
        return None
    return SUPPORTED_ASSETS.get(symbol.upper())


def find_asset_by_address(address: Optional[str]) -> Optional[Dict[str, Any]]:
    if not address:
        return None
    lowered = address.lower()
    for symbol, asset in SUPPORTED_ASSETS.items():
        if asset['address'].lower() == lowered and asset['address'] != NATIVE_PLACEHOLDER:
            return {'symbol': symbol, **asset}
    return None
