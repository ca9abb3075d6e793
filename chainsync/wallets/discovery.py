"""
Wallet Discovery

Finds the wallet providers exposed by the host. Providers announced through
the EIP-6963 request/announce protocol are collected as they arrive; once the
grace window elapses the single injected provider is scanned for vendor flags
and merged in behind them.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from ..config import settings
from .host import ANNOUNCE_PROVIDER_EVENT, REQUEST_PROVIDER_EVENT, ProviderDetail

# Placeholder icons used when a wallet does not supply its own
WALLET_ICONS: Dict[str, str] = {
    "metamask": "data:image/svg+xml;base64,PHN2ZyB3aWR0aD0iNDAiIGhlaWdodD0iNDAiIHZpZXdCb3g9IjAgMCA0MCA0MCIgeG1sbnM9Imh0dHA6Ly93d3cudzMub3JnLzIwMDAvc3ZnIj48cmVjdCB3aWR0aD0iNDAiIGhlaWdodD0iNDAiIHJ4PSI4IiBmaWxsPSIjRjY4NTFCIi8+PC9zdmc+",
    "trust": "data:image/svg+xml;base64,PHN2ZyB3aWR0aD0iNDAiIGhlaWdodD0iNDAiIHZpZXdCb3g9IjAgMCA0MCA0MCIgeG1sbnM9Imh0dHA6Ly93d3cudzMub3JnLzIwMDAvc3ZnIj48cmVjdCB3aWR0aD0iNDAiIGhlaWdodD0iNDAiIHJ4PSI4IiBmaWxsPSIjMzM3NUJCIi8+PC9zdmc+",
    "coinbase": "data:image/svg+xml;base64,PHN2ZyB3aWR0aD0iNDAiIGhlaWdodD0iNDAiIHZpZXdCb3g9IjAgMCA0MCA0MCIgeG1sbnM9Imh0dHA6Ly93d3cudzMub3JnLzIwMDAvc3ZnIj48cmVjdCB3aWR0aD0iNDAiIGhlaWdodD0iNDAiIHJ4PSI4IiBmaWxsPSIjMDA1MkZGIi8+PC9zdmc+",
    "phantom": "data:image/svg+xml;base64,PHN2ZyB3aWR0aD0iNDAiIGhlaWdodD0iNDAiIHZpZXdCb3g9IjAgMCA0MCA0MCIgeG1sbnM9Imh0dHA6Ly93d3cudzMub3JnLzIwMDAvc3ZnIj48cmVjdCB3aWR0aD0iNDAiIGhlaWdodD0iNDAiIHJ4PSI4IiBmaWxsPSIjQUI5RkY1Ii8+PC9zdmc+",
    "brave": "data:image/svg+xml;base64,PHN2ZyB3aWR0aD0iNDAiIGhlaWdodD0iNDAiIHZpZXdCb3g9IjAgMCA0MCA0MCIgeG1sbnM9Imh0dHA6Ly93d3cudzMub3JnLzIwMDAvc3ZnIj48cmVjdCB3aWR0aD0iNDAiIGhlaWdodD0iNDAiIHJ4PSI4IiBmaWxsPSIjRkY1NTAwIi8+PC9zdmc+",
    "rabby": "data:image/svg+xml;base64,PHN2ZyB3aWR0aD0iNDAiIGhlaWdodD0iNDAiIHZpZXdCb3g9IjAgMCA0MCA0MCIgeG1sbnM9Imh0dHA6Ly93d3cudzMub3JnLzIwMDAvc3ZnIj48cmVjdCB3aWR0aD0iNDAiIGhlaWdodD0iNDAiIHJ4PSI4IiBmaWxsPSIjOEM4M0ZGIi8+PC9zdmc+",
    "default": "data:image/svg+xml;base64,PHN2ZyB3aWR0aD0iNDAiIGhlaWdodD0iNDAiIHZpZXdCb3g9IjAgMCA0MCA0MCIgeG1sbnM9Imh0dHA6Ly93d3cudzMub3JnLzIwMDAvc3ZnIj48cmVjdCB3aWR0aD0iNDAiIGhlaWdodD0iNDAiIHJ4PSI4IiBmaWxsPSIjNjY2Ii8+PC9zdmc+",
}

# (vendor flag, key, display name, rdns), checked in order on the injected provider
LEGACY_VENDORS: Tuple[Tuple[str, str, str, str], ...] = (
    ("isMetaMask", "metamask", "MetaMask", "io.metamask"),
    ("isTrust", "trust", "Trust Wallet", "com.trustwallet.app"),
    ("isCoinbaseWallet", "coinbase", "Coinbase Wallet", "com.coinbase.wallet"),
    ("isPhantom", "phantom", "Phantom", "app.phantom"),
    ("isBraveWallet", "brave", "Brave Wallet", "com.brave.wallet"),
    ("isRabby", "rabby", "Rabby", "io.rabby"),
)

# Vendors recognised inside a multi-provider ``providers`` array
MULTI_PROVIDER_VENDORS = LEGACY_VENDORS[:3]

METAMASK_RDNS = "io.metamask"
COINBASE_RDNS = "com.coinbase.wallet"
UNKNOWN_RDNS = "unknown"


@dataclass(frozen=True)
class DetectedProvider:
    """A wallet found during discovery. Never mutated after creation."""

    id: str
    display_name: str
    icon: str
    rdns: str
    provider: Any = field(compare=False, repr=False)
    legacy: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.display_name,
            "icon": self.icon,
            "rdns": self.rdns,
            "legacy": self.legacy,
        }


def _flag(provider: Any, name: str) -> bool:
    return bool(getattr(provider, name, False))


def scan_injected_provider(injected: Any) -> List[DetectedProvider]:
    """Synthesize descriptors for the injected provider from its vendor flags."""
    if injected is None:
        return []

    found: List[DetectedProvider] = []
    for flag, key, name, rdns in LEGACY_VENDORS:
        if _flag(injected, flag):
            found.append(DetectedProvider(
                id=f"legacy-{key}",
                display_name=name,
                icon=WALLET_ICONS[key],
                rdns=rdns,
                provider=injected,
                legacy=True,
            ))
            break
    else:
        found.append(DetectedProvider(
            id="legacy-unknown",
            display_name="Browser Wallet",
            icon=WALLET_ICONS["default"],
            rdns=UNKNOWN_RDNS,
            provider=injected,
            legacy=True,
        ))

    providers = getattr(injected, "providers", None)
    if isinstance(providers, (list, tuple)):
        for index, candidate in enumerate(providers):
            for flag, key, name, rdns in MULTI_PROVIDER_VENDORS:
                if _flag(candidate, flag) and not any(p.rdns == rdns for p in found):
                    found.append(DetectedProvider(
                        id=f"provider-{key}-{index}",
                        display_name=name,
                        icon=WALLET_ICONS[key],
                        rdns=rdns,
                        provider=candidate,
                        legacy=True,
                    ))

    return found


class ProviderRegistry:
    """
    Live set of detected wallet providers.

    ``discover()`` must be called from inside a running event loop. It is
    idempotent: repeated calls while discovery is active or finished do
    nothing.
    """

    def __init__(
        self,
        host: Any,
        grace_period_ms: Optional[int] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.host = host
        self.grace_period_ms = (
            grace_period_ms if grace_period_ms is not None else settings.discovery_grace_period_ms
        )
        self.logger = logger or logging.getLogger(__name__)
        self._providers: List[DetectedProvider] = []
        self._started = False
        self._listening = False
        self._discovering = False
        self._grace_task: Optional[asyncio.Task] = None
        self._done = asyncio.Event()

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def providers(self) -> List[DetectedProvider]:
        return list(self._providers)

    @property
    def is_discovering(self) -> bool:
        return self._discovering

    @property
    def has_providers(self) -> bool:
        return bool(self._providers)

    # =========================================================================
    # Discovery
    # =========================================================================

    def discover(self) -> None:
        if self._started:
            return
        self._started = True
        self._discovering = True

        self.host.add_event_listener(ANNOUNCE_PROVIDER_EVENT, self._on_announce)
        self._listening = True
        self.host.dispatch_event(REQUEST_PROVIDER_EVENT)

        self._grace_task = asyncio.create_task(self._finish_after_grace())

    async def wait_until_discovered(self) -> List[DetectedProvider]:
        if not self._started:
            self.discover()
        await self._done.wait()
        return self.providers

    async def _finish_after_grace(self) -> None:
        try:
            await asyncio.sleep(self.grace_period_ms / 1000)
        except asyncio.CancelledError:
            self._discovering = False
            self._done.set()
            raise

        self._merge_legacy(scan_injected_provider(getattr(self.host, "injected_provider", None)))
        self._discovering = False
        self._done.set()

        if not self._providers:
            self.logger.info("No wallets available")
        else:
            self.logger.info(
                "Discovered %d wallet(s): %s",
                len(self._providers),
                ", ".join(p.display_name for p in self._providers),
            )

    def _on_announce(self, detail: Any) -> None:
        if isinstance(detail, ProviderDetail):
            info, provider = detail.info, detail.provider
            uuid, name, icon, rdns = info.uuid, info.name, info.icon, info.rdns
        elif isinstance(detail, dict) and isinstance(detail.get("info"), dict):
            info = detail["info"]
            provider = detail.get("provider")
            uuid, name, icon, rdns = info.get("uuid"), info.get("name"), info.get("icon"), info.get("rdns")
        else:
            self.logger.debug("Ignoring malformed provider announcement")
            return

        if not uuid or provider is None:
            self.logger.debug("Ignoring provider announcement without uuid/provider")
            return

        announced = DetectedProvider(
            id=uuid,
            display_name=name or "Unknown Wallet",
            icon=icon or WALLET_ICONS["default"],
            rdns=rdns or UNKNOWN_RDNS,
            provider=provider,
        )

        if any(p.id == announced.id for p in self._providers):
            return

        for index, existing in enumerate(self._providers):
            if existing.rdns == announced.rdns:
                # Announced providers replace legacy-synthesized ones
                if existing.legacy:
                    self._providers[index] = announced
                    self.logger.debug("Announced %s replaced legacy entry %s", announced.id, existing.id)
                return

        self._providers.append(announced)
        self.logger.debug("Provider announced: %s (%s)", announced.display_name, announced.rdns)

    def _merge_legacy(self, legacy: List[DetectedProvider]) -> None:
        for candidate in legacy:
            exists = any(
                p.id == candidate.id
                or p.rdns == candidate.rdns
                or p.display_name == candidate.display_name
                for p in self._providers
            )
            if not exists:
                self._providers.append(candidate)

    # =========================================================================
    # Lookups
    # =========================================================================

    def get(self, provider_id: str) -> Optional[DetectedProvider]:
        for provider in self._providers:
            if provider.id == provider_id:
                return provider
        return None

    def default_provider(self) -> Optional[DetectedProvider]:
        """Prefer MetaMask, then Coinbase Wallet, then whatever was found first."""
        for rdns in (METAMASK_RDNS, COINBASE_RDNS):
            for provider in self._providers:
                if provider.rdns == rdns:
                    return provider
        return self._providers[0] if self._providers else None

    def close(self) -> None:
        if self._listening:
            self.host.remove_event_listener(ANNOUNCE_PROVIDER_EVENT, self._on_announce)
            self._listening = False
        if self._grace_task and not self._grace_task.done():
            self._grace_task.cancel()
        self._grace_task = None
        self._discovering = False
        self._done.set()
