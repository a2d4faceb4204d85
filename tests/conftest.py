"""Shared test fixtures and sample data."""
from __future__ import annotations

import textwrap
from pathlib import Path
from typing import Any, Optional

import eth_abi.abi
import pytest
from eth_utils import encode_hex

from lendview.assets import AssetRegistry
from lendview.chains.evm import RpcError
from lendview.config import (
    AppConfig,
    AssetConfig,
    ChainConfig,
    LedgerConfig,
    MonitorConfig,
    NotificationsConfig,
    ProtocolConfig,
    TelegramConfig,
    WalletConfig,
)
from lendview.models import AssetReserveState, TransactionRecord, TransactionType, record_id
from lendview.protocol.abi import address_topic, encode_call
from lendview.protocol.events import EventCategory

RAY = 10**27

POOL = "0x0165878A594ca255338adfa4d48449f69242Eb8F"
MDAI = "0xe7f1725E7734CE288F8367e1Bb143E90bb3F0512"
MUSDC = "0x9fE46736679d2D9a65F0992F2272dE9f3c7fa6e0"
USER = "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"
OTHER = "0x70997970C51812dc3A010C7d01b50e0d17dc79C8"
BORROWER = "0x3C44CdDdB6a900fa2b585dd299e03d12FA4293BC"
RECEIVER = "0x610178dA211FEF7D417bC0e6FeD39F05609AD788"


# ---------------------------------------------------------------------------
# Config fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def sample_assets() -> tuple[AssetConfig, ...]:
    return (
        AssetConfig(symbol="mDAI", address=MDAI, decimals=18, name="Mock DAI", is_demo=True),
        AssetConfig(symbol="mUSDC", address=MUSDC, decimals=6, name="Mock USDC", is_demo=True),
    )


@pytest.fixture()
def registry(sample_assets: tuple[AssetConfig, ...]) -> AssetRegistry:
    return AssetRegistry(sample_assets)


@pytest.fixture()
def sample_chain_config() -> ChainConfig:
    return ChainConfig(
        rpc_endpoints=("https://rpc1.example.com", "https://rpc2.example.com"),
        rpc_timeout=10,
    )


@pytest.fixture()
def sample_protocol_config() -> ProtocolConfig:
    return ProtocolConfig(lending_pool=POOL, flash_loan_receiver=RECEIVER)


@pytest.fixture()
def sample_app_config(
    sample_assets: tuple[AssetConfig, ...],
    sample_chain_config: ChainConfig,
    sample_protocol_config: ProtocolConfig,
) -> AppConfig:
    return AppConfig(
        monitor=MonitorConfig(check_interval_minutes=5),
        ledger=LedgerConfig(capacity=20, poll_interval_seconds=0.01, retry_delay_seconds=0.01),
        wallets=(WalletConfig(label="test-wallet", address=USER),),
        chain=sample_chain_config,
        protocol=sample_protocol_config,
        assets=sample_assets,
        notifications=NotificationsConfig(
            telegram=TelegramConfig(
                enabled=True,
                alert_bot_token="fake-alert-token",
                log_bot_token="fake-log-token",
                chat_id="12345",
            ),
        ),
    )


# ---------------------------------------------------------------------------
# Config YAML fixture
# ---------------------------------------------------------------------------

SAMPLE_YAML = textwrap.dedent(f"""\
    monitor:
      check_interval_minutes: 5
      health_thresholds:
        danger: 1.2
        warning: 1.6
    guard:
      min_health_factor_for_borrow: 1.25
    ledger:
      capacity: 10
      lookback_blocks: 100
    wallets:
      - label: test-wallet
        address: "{USER}"
    chain:
      rpc_endpoints: ["https://rpc.example.com"]
      rpc_timeout: 10
    protocol:
      lending_pool: "{POOL}"
      flash_loan_fee_bps: 9
    assets:
      - symbol: mDAI
        address: "{MDAI}"
        decimals: 18
        is_demo: true
      - symbol: mUSDC
        address: "{MUSDC}"
        decimals: 6
    notifications:
      telegram:
        enabled: true
        alert_bot_token: "tok1"
        log_bot_token: "tok2"
        chat_id: "999"
""")


@pytest.fixture()
def sample_yaml_path(tmp_path: Path) -> Path:
    cfg_file = tmp_path / "config.yaml"
    cfg_file.write_text(SAMPLE_YAML)
    return cfg_file


# ---------------------------------------------------------------------------
# Model factories
# ---------------------------------------------------------------------------


def make_reserve(
    address: str = MDAI,
    symbol: str = "mDAI",
    decimals: int = 18,
    deposits: int = 1_000 * 10**18,
    borrows: int = 0,
    price: Optional[int] = 100_000_000,
    liquidation_bonus: int = 500,
    is_supported: bool = True,
    **overrides: Any,
) -> AssetReserveState:
    """Reserve with both indices at 1 RAY, so scaled totals equal actual ones."""
    fields = dict(
        address=address,
        symbol=symbol,
        decimals=decimals,
        is_supported=is_supported,
        liquidity_index=RAY,
        variable_borrow_index=RAY,
        current_liquidity_rate=3 * RAY // 100,
        current_variable_borrow_rate=5 * RAY // 100,
        total_scaled_deposits=deposits,
        total_scaled_variable_borrows=borrows,
        ltv=7500,
        liquidation_threshold=8000,
        reserve_factor=1000,
        liquidation_bonus=liquidation_bonus,
        price=price,
    )
    fields.update(overrides)
    return AssetReserveState(**fields)


def make_record(
    tx_hash: str = "0xaaa",
    log_index: int = 0,
    timestamp: int = 1_700_000_000,
    block_number: int = 100,
    event_type: TransactionType = TransactionType.DEPOSIT,
    amount: int = 10**18,
) -> TransactionRecord:
    return TransactionRecord(
        id=record_id(tx_hash, log_index),
        event_type=event_type,
        asset_symbol="mDAI",
        asset_address=MDAI,
        amount=amount,
        amount_formatted="1.0000",
        timestamp=timestamp,
        date_formatted="2023-11-14 22:13:20",
        tx_hash=tx_hash,
        log_index=log_index,
        block_number=block_number,
        user=USER,
    )


def make_log(
    category: EventCategory,
    asset: str = MDAI,
    user: str = USER,
    amount: int = 10**18,
    timestamp: int = 1_700_000_000,
    tx_hash: str = "0x" + "ab" * 32,
    log_index: int = 0,
    block_number: int = 100,
    repayer: Optional[str] = None,
    removed: bool = False,
) -> dict[str, Any]:
    """An ``eth_getLogs`` entry as an EVM node returns it."""
    topics = [category.topic0, address_topic(asset), address_topic(user)]
    if category is EventCategory.REPAID:
        topics.append(address_topic(repayer or user))
    data = eth_abi.abi.encode(["uint256", "uint256", "uint256"], [amount, amount, timestamp])
    return {
        "address": POOL,
        "topics": topics,
        "data": encode_hex(data),
        "blockNumber": hex(block_number),
        "transactionHash": tx_hash,
        "logIndex": hex(log_index),
        "removed": removed,
    }


STRATEGY = "0x" + "11" * 20
A_TOKEN = "0x" + "22" * 20

ASSET_DATA_TYPES = [
    "bool", "uint8", "uint256", "uint256", "address", "uint256", "uint256", "uint256",
    "uint256", "uint256", "uint256", "uint256", "uint256", "address", "uint256", "uint256",
]


def asset_data_values(
    decimals: int = 18,
    deposits: int = 500,
    borrows: int = 100,
    is_supported: bool = True,
    liquidation_bonus: int = 500,
) -> list[Any]:
    """``getAssetData`` return values with both indices at 1 RAY."""
    return [
        is_supported, decimals, 7500, 8000, STRATEGY, 1000, liquidation_bonus,
        RAY, RAY, 1_700_000_000, deposits, borrows, 0, A_TOKEN,
        3 * RAY // 100, 5 * RAY // 100,
    ]


# ---------------------------------------------------------------------------
# In-memory chain
# ---------------------------------------------------------------------------


class FakeChain:
    """Answers ``eth_call`` from a table of encoded responses and serves logs.

    Calls with no registered response revert with ``RpcError``.
    """

    def __init__(self, block: int = 100) -> None:
        self.block = block
        self._calls: dict[tuple[str, str], Any] = {}
        self.logs: list[dict[str, Any]] = []
        self.log_failures: dict[str, list[Exception]] = {}
        self.get_logs_calls: list[tuple[list[Any], int, int]] = []

    def respond(
        self,
        to: str,
        signature: str,
        arg_types: list[str],
        args: list[Any],
        result_types: list[str],
        result: list[Any],
    ) -> None:
        key = (to.lower(), encode_call(signature, arg_types, args).lower())
        self._calls[key] = encode_hex(eth_abi.abi.encode(result_types, result))

    def fail(self, to: str, signature: str, arg_types: list[str], args: list[Any],
             error: Exception) -> None:
        key = (to.lower(), encode_call(signature, arg_types, args).lower())
        self._calls[key] = error

    async def eth_call(self, to: str, data: str, block: int | str = "latest") -> str:
        response = self._calls.get((to.lower(), data.lower()))
        if response is None:
            raise RpcError("All RPC endpoints failed. Last error: execution reverted")
        if isinstance(response, Exception):
            raise response
        return response

    async def block_number(self) -> int:
        return self.block

    async def get_logs(
        self,
        address: str,
        topics: list[Any],
        from_block: int | str,
        to_block: int | str = "latest",
    ) -> list[dict[str, Any]]:
        self.get_logs_calls.append((topics, from_block, to_block))
        failures = self.log_failures.get(topics[0])
        if failures:
            raise failures.pop(0)
        matches = []
        for log in self.logs:
            if log["topics"][0] != topics[0]:
                continue
            if not from_block <= int(log["blockNumber"], 16) <= to_block:
                continue
            if len(topics) > 2 and topics[2] is not None and log["topics"][2] != topics[2]:
                continue
            matches.append(log)
        return matches


@pytest.fixture()
def fake_chain() -> FakeChain:
    return FakeChain()


def seed_account(
    chain: FakeChain,
    user: str = USER,
    collateral_usd: int = 2_000 * 10**8,
    debt_usd: int = 500 * 10**8,
    available_usd: int = 1_000 * 10**8,
    health_factor: int = 3 * 10**18,
) -> None:
    """Register the cross-asset account reads for ``user``."""
    for signature, value in (
        ("getUserTotalCollateralUSD(address)", collateral_usd),
        ("getUserTotalDebtUSD(address)", debt_usd),
        ("getUserAvailableBorrowsUSD(address)", available_usd),
        ("calculateHealthFactor(address)", health_factor),
    ):
        chain.respond(POOL, signature, ["address"], [user], ["uint256"], [value])


def seed_asset(
    chain: FakeChain,
    asset: str,
    decimals: int,
    user: str = USER,
    price: int = 10**8,
    deposit: int = 0,
    borrow: int = 0,
    wallet: int = 0,
    allowance: int = 0,
    pool_deposits: int = 1_000_000,
    pool_borrows: int = 0,
) -> None:
    """Register every per-asset read the session issues for ``asset``."""
    scale = 10**decimals
    chain.respond(
        POOL, "getAssetData(address)", ["address"], [asset], ASSET_DATA_TYPES,
        asset_data_values(decimals, pool_deposits * scale, pool_borrows * scale),
    )
    chain.respond(POOL, "getAssetPrice(address)", ["address"], [asset], ["uint256"], [price])
    chain.respond(
        POOL, "getEffectiveUserDeposit(address,address)", ["address", "address"],
        [asset, user], ["uint256"], [deposit],
    )
    chain.respond(
        POOL, "getEffectiveUserBorrowBalance(address,address)", ["address", "address"],
        [asset, user], ["uint256"], [borrow],
    )
    chain.respond(asset, "balanceOf(address)", ["address"], [user], ["uint256"], [wallet])
    chain.respond(
        asset, "allowance(address,address)", ["address", "address"], [user, POOL],
        ["uint256"], [allowance],
    )
