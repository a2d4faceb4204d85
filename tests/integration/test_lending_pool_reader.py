"""Integration tests for lending-pool reads through an in-memory chain."""
from __future__ import annotations

import pytest

from lendview.assets import AssetRegistry
from lendview.chains.evm import RpcError
from lendview.config import ProtocolConfig
from lendview.protocol.lending_pool import ASSET_DATA_FIELDS, LendingPoolReader

from conftest import A_TOKEN, MDAI, MUSDC, POOL, RAY, USER, FakeChain, asset_data_values


@pytest.fixture()
def reader(fake_chain: FakeChain, registry: AssetRegistry) -> LendingPoolReader:
    return LendingPoolReader(fake_chain, ProtocolConfig(lending_pool=POOL), registry)


class TestReserveReads:
    @pytest.mark.asyncio
    async def test_supported_assets(self, fake_chain: FakeChain, reader: LendingPoolReader) -> None:
        fake_chain.respond(POOL, "getSupportedAssets()", [], [], ["address[]"], [[MDAI, MUSDC]])
        assets = await reader.get_supported_assets()
        assert [a.lower() for a in assets] == [MDAI.lower(), MUSDC.lower()]

    @pytest.mark.asyncio
    async def test_asset_data(self, fake_chain: FakeChain, reader: LendingPoolReader) -> None:
        fake_chain.respond(
            POOL, "getAssetData(address)", ["address"], [MUSDC],
            [t for _, t in ASSET_DATA_FIELDS], asset_data_values(decimals=6),
        )
        reserve = await reader.get_asset_data(MUSDC)

        assert reserve.symbol == "mUSDC"
        assert reserve.decimals == 6
        assert reserve.is_supported is True
        assert reserve.ltv == 7500
        assert reserve.liquidation_bonus == 500
        assert reserve.total_scaled_deposits == 500
        assert reserve.current_variable_borrow_rate == 5 * RAY // 100
        assert reserve.a_token_address.lower() == A_TOKEN
        assert reserve.price is None

    @pytest.mark.asyncio
    async def test_asset_price(self, fake_chain: FakeChain, reader: LendingPoolReader) -> None:
        fake_chain.respond(POOL, "getAssetPrice(address)", ["address"], [MDAI], ["uint256"], [10**8])
        assert await reader.get_asset_price(MDAI) == 10**8

    @pytest.mark.asyncio
    async def test_revert_raises_rpc_error(self, reader: LendingPoolReader) -> None:
        with pytest.raises(RpcError):
            await reader.get_asset_price(MDAI)

    @pytest.mark.asyncio
    async def test_malformed_result_raises_value_error(
        self, fake_chain: FakeChain, reader: LendingPoolReader
    ) -> None:
        # A single word where sixteen are expected
        fake_chain.respond(POOL, "getAssetData(address)", ["address"], [MDAI], ["uint256"], [1])
        with pytest.raises(ValueError):
            await reader.get_asset_data(MDAI)


class TestUserReads:
    @pytest.mark.asyncio
    async def test_user_totals(self, fake_chain: FakeChain, reader: LendingPoolReader) -> None:
        for signature, value in (
            ("getUserTotalCollateralUSD(address)", 200 * 10**8),
            ("getUserTotalDebtUSD(address)", 50 * 10**8),
            ("getUserAvailableBorrowsUSD(address)", 100 * 10**8),
            ("calculateHealthFactor(address)", 2 * 10**18),
        ):
            fake_chain.respond(POOL, signature, ["address"], [USER], ["uint256"], [value])

        assert await reader.get_user_total_collateral_usd(USER) == 200 * 10**8
        assert await reader.get_user_total_debt_usd(USER) == 50 * 10**8
        assert await reader.get_user_available_borrows_usd(USER) == 100 * 10**8
        assert await reader.calculate_health_factor(USER) == 2 * 10**18

    @pytest.mark.asyncio
    async def test_effective_balances(self, fake_chain: FakeChain, reader: LendingPoolReader) -> None:
        args = ["address", "address"]
        fake_chain.respond(POOL, "getEffectiveUserDeposit(address,address)", args, [MDAI, USER],
                           ["uint256"], [7])
        fake_chain.respond(POOL, "getEffectiveUserBorrowBalance(address,address)", args,
                           [MDAI, USER], ["uint256"], [3])

        assert await reader.get_effective_user_deposit(MDAI, USER) == 7
        assert await reader.get_effective_user_borrow_balance(MDAI, USER) == 3

    @pytest.mark.asyncio
    async def test_erc20_reads_target_token(self, fake_chain: FakeChain, reader: LendingPoolReader) -> None:
        fake_chain.respond(MDAI, "balanceOf(address)", ["address"], [USER], ["uint256"], [11])
        fake_chain.respond(MDAI, "allowance(address,address)", ["address", "address"],
                           [USER, POOL], ["uint256"], [5])

        assert await reader.balance_of(MDAI, USER) == 11
        assert await reader.allowance(MDAI, USER) == 5
