"""
Chain Interaction Module

Provider-backed chain adapter, ABI encoding, unit conversion and balance
polling.
"""

from .adapter import ChainInterface, ProviderChainAdapter
from .balances import BalancePoller
from .units import format_units, from_base_units, parse_amount, resolve_decimals, to_base_units

__all__ = [
    # Adapter
    "ChainInterface",
    "ProviderChainAdapter",
    # Polling
    "BalancePoller",
    # Units
    "to_base_units",
    "from_base_units",
    "format_units",
    "parse_amount",
    "resolve_decimals",
]
