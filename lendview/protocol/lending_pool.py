"""Typed reads against the lending pool and ERC-20 tokens.

Every method performs exactly one ``eth_call``. Transport failures raise
``RpcError``; malformed return data raises ``ValueError``. Callers decide how
to degrade.
"""
from __future__ import annotations

import logging

from ..assets import AssetRegistry
from ..config import ProtocolConfig
from ..interfaces.chain import ChainClient
from ..models import AssetReserveState
from .abi import decode_result, encode_call

logger = logging.getLogger(__name__)

# getAssetData returns a static struct, ABI-identical to its flattened fields.
ASSET_DATA_FIELDS: tuple[tuple[str, str], ...] = (
    ("is_supported", "bool"),
    ("decimals", "uint8"),
    ("ltv", "uint256"),
    ("liquidation_threshold", "uint256"),
    ("interest_rate_strategy", "address"),
    ("reserve_factor", "uint256"),
    ("liquidation_bonus", "uint256"),
    ("liquidity_index", "uint256"),
    ("variable_borrow_index", "uint256"),
    ("last_update_timestamp", "uint256"),
    ("total_scaled_deposits", "uint256"),
    ("total_scaled_variable_borrows", "uint256"),
    ("current_total_reserves", "uint256"),
    ("a_token_address", "address"),
    ("current_liquidity_rate", "uint256"),
    ("current_variable_borrow_rate", "uint256"),
)


class LendingPoolReader:
    """Read-only binding of the lending pool contract."""

    def __init__(
        self,
        client: ChainClient,
        protocol: ProtocolConfig,
        registry: AssetRegistry,
    ) -> None:
        self._client = client
        self._pool = protocol.lending_pool
        self._registry = registry

    @property
    def pool_address(self) -> str:
        return self._pool

    async def _call_uint(self, signature: str, arg_types: list[str], args: list) -> int:
        data = await self._client.eth_call(self._pool, encode_call(signature, arg_types, args))
        (value,) = decode_result(["uint256"], data)
        return value

    # ------------------------------------------------------------------
    # Reserves
    # ------------------------------------------------------------------

    async def get_supported_assets(self) -> list[str]:
        data = await self._client.eth_call(
            self._pool, encode_call("getSupportedAssets()", [])
        )
        (assets,) = decode_result(["address[]"], data)
        return list(assets)

    async def get_asset_data(self, asset: str) -> AssetReserveState:
        data = await self._client.eth_call(
            self._pool, encode_call("getAssetData(address)", ["address"], [asset])
        )
        values = decode_result([t for _, t in ASSET_DATA_FIELDS], data)
        fields = {name: value for (name, _), value in zip(ASSET_DATA_FIELDS, values)}
        logger.debug("Asset data for %s: %s", asset, fields)

        configured = self._registry.get(asset)
        if configured and configured.decimals != fields["decimals"]:
            logger.warning(
                "Configured decimals %d for %s differ from on-chain %d; using on-chain",
                configured.decimals,
                configured.symbol,
                fields["decimals"],
            )
        return AssetReserveState(
            address=asset,
            symbol=self._registry.symbol_for(asset),
            **fields,
        )

    async def get_asset_price(self, asset: str) -> int:
        """Oracle price, 8 decimals."""
        return await self._call_uint("getAssetPrice(address)", ["address"], [asset])

    # ------------------------------------------------------------------
    # User positions
    # ------------------------------------------------------------------

    async def get_effective_user_deposit(self, asset: str, user: str) -> int:
        return await self._call_uint(
            "getEffectiveUserDeposit(address,address)", ["address", "address"], [asset, user]
        )

    async def get_effective_user_borrow_balance(self, asset: str, user: str) -> int:
        return await self._call_uint(
            "getEffectiveUserBorrowBalance(address,address)",
            ["address", "address"],
            [asset, user],
        )

    async def get_user_total_collateral_usd(self, user: str) -> int:
        return await self._call_uint("getUserTotalCollateralUSD(address)", ["address"], [user])

    async def get_user_total_debt_usd(self, user: str) -> int:
        return await self._call_uint("getUserTotalDebtUSD(address)", ["address"], [user])

    async def get_user_available_borrows_usd(self, user: str) -> int:
        return await self._call_uint(
            "getUserAvailableBorrowsUSD(address)", ["address"], [user]
        )

    async def calculate_health_factor(self, user: str) -> int:
        """Raw 1e18-scaled health factor; ``2**256 - 1`` when the user has no debt."""
        return await self._call_uint("calculateHealthFactor(address)", ["address"], [user])

    # ------------------------------------------------------------------
    # ERC-20
    # ------------------------------------------------------------------

    async def balance_of(self, token: str, owner: str) -> int:
        data = await self._client.eth_call(
            token, encode_call("balanceOf(address)", ["address"], [owner])
        )
        (value,) = decode_result(["uint256"], data)
        return value

    async def allowance(self, token: str, owner: str) -> int:
        """Amount of ``token`` the pool may pull from ``owner``."""
        data = await self._client.eth_call(
            token,
            encode_call("allowance(address,address)", ["address", "address"], [owner, self._pool]),
        )
        (value,) = decode_result(["uint256"], data)
        return value
