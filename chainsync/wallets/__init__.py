"""Wallet provider discovery and the host boundary."""

from .base import ProviderRpcError, WalletProvider
from .discovery import DetectedProvider, ProviderRegistry, scan_injected_provider
from .host import (
    ANNOUNCE_PROVIDER_EVENT,
    REQUEST_PROVIDER_EVENT,
    LocalHost,
    ProviderDetail,
    ProviderInfo,
)

__all__ = [
    "WalletProvider",
    "ProviderRpcError",
    "DetectedProvider",
    "ProviderRegistry",
    "scan_injected_provider",
    "LocalHost",
    "ProviderInfo",
    "ProviderDetail",
    "ANNOUNCE_PROVIDER_EVENT",
    "REQUEST_PROVIDER_EVENT",
]
