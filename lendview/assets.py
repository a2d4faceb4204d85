"""Static per-asset lookup table keyed by underlying address."""
from __future__ import annotations

from types import MappingProxyType
from typing import Iterator, Mapping

from .config import AssetConfig

# Decimals assumed for an address missing from the table.
UNKNOWN_ASSET_DECIMALS = 18


class AssetRegistry:
    """Immutable mapping of lower-cased underlying address → ``AssetConfig``."""

    def __init__(self, assets: tuple[AssetConfig, ...] | list[AssetConfig]) -> None:
        by_address: dict[str, AssetConfig] = {}
        for asset in assets:
            key = asset.address.lower()
            if key in by_address:
                raise ValueError(f"Duplicate asset address '{asset.address}'")
            by_address[key] = asset
        self._by_address: Mapping[str, AssetConfig] = MappingProxyType(by_address)
        self._by_symbol: Mapping[str, AssetConfig] = MappingProxyType(
            {a.symbol.upper(): a for a in assets}
        )

    def __len__(self) -> int:
        return len(self._by_address)

    def __iter__(self) -> Iterator[AssetConfig]:
        return iter(self._by_address.values())

    def __contains__(self, address: object) -> bool:
        return isinstance(address, str) and address.lower() in self._by_address

    def get(self, address: str) -> AssetConfig | None:
        return self._by_address.get(address.lower())

    def by_symbol(self, symbol: str) -> AssetConfig | None:
        return self._by_symbol.get(symbol.upper())

    def symbol_for(self, address: str) -> str:
        """Configured symbol, or a shortened address for unknown assets."""
        asset = self.get(address)
        return asset.symbol if asset else f"{address[:6]}..."

    def decimals_for(self, address: str) -> int:
        asset = self.get(address)
        return asset.decimals if asset else UNKNOWN_ASSET_DECIMALS
