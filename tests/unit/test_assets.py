"""Unit tests for the asset lookup table."""
from __future__ import annotations

import pytest

from lendview.assets import UNKNOWN_ASSET_DECIMALS, AssetRegistry
from lendview.config import AssetConfig

from conftest import MDAI, MUSDC


class TestAssetRegistry:
    def test_lookup_is_case_insensitive(self, registry: AssetRegistry) -> None:
        assert registry.get(MDAI.lower()).symbol == "mDAI"
        assert registry.get(MDAI.upper().replace("0X", "0x")).symbol == "mDAI"
        assert MUSDC.lower() in registry

    def test_by_symbol(self, registry: AssetRegistry) -> None:
        assert registry.by_symbol("musdc").address == MUSDC
        assert registry.by_symbol("XYZ") is None

    def test_unknown_asset_fallbacks(self, registry: AssetRegistry) -> None:
        unknown = "0x1234567890abcdef1234567890abcdef12345678"
        assert registry.symbol_for(unknown) == "0x1234..."
        assert registry.decimals_for(unknown) == UNKNOWN_ASSET_DECIMALS == 18

    def test_known_decimals(self, registry: AssetRegistry) -> None:
        assert registry.decimals_for(MUSDC) == 6

    def test_iteration_and_len(self, registry: AssetRegistry) -> None:
        assert len(registry) == 2
        assert [a.symbol for a in registry] == ["mDAI", "mUSDC"]

    def test_duplicates_rejected(self) -> None:
        with pytest.raises(ValueError, match="Duplicate"):
            AssetRegistry(
                [AssetConfig(symbol="A", address=MDAI), AssetConfig(symbol="B", address=MDAI.lower())]
            )

    def test_immutable(self, registry: AssetRegistry) -> None:
        with pytest.raises(TypeError):
            registry._by_address["x"] = None  # type: ignore[index]
