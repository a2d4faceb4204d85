"""One user's view of the lending pool.

A ``Session`` owns every read and subscription it starts. ``refresh()`` fires
a batch of independent reads that may resolve in any order; each result is
tagged with the refresh generation that requested it and is dropped if a
newer generation already wrote that field, or if the session has closed.
A failed read leaves its field ``None`` and never blocks the others.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Awaitable, Hashable, Optional

import aiohttp

from ..analytics.fixed_point import parse_units
from ..analytics.guard import (
    ActionForm,
    ActionKind,
    FlashLoanQuote,
    GuardContext,
    expected_collateral_to_receive,
    flash_loan_quote,
    flash_loan_receiver_warning,
    needs_approval,
    validate_flash_loan,
    validate_flash_loan_receiver,
    validate_liquidation,
)
from ..analytics.risk import (
    AccountOverview,
    ReserveLine,
    build_market,
    build_overview,
    build_risk_summary,
    health_factor_from_raw,
    pool_available_liquidity,
)
from ..assets import AssetRegistry
from ..chains.evm import EvmClient, RpcError
from ..config import AppConfig
from ..interfaces.chain import ChainClient
from ..ledger.reconciler import ErrorCallback, EventLedger, RecordCallback
from ..models import (
    AssetReserveState,
    UserAssetPosition,
    UserRiskSummary,
    ValidationResult,
)
from ..protocol.lending_pool import LendingPoolReader

logger = logging.getLogger(__name__)

READ_ERRORS = (RpcError, ValueError, aiohttp.ClientError, asyncio.TimeoutError)


def _key(kind: str, *addresses: str) -> tuple[str, ...]:
    return (kind, *(a.lower() for a in addresses))


class SessionClosedError(RuntimeError):
    """Raised when a closed session is asked to start new work."""


@dataclass(frozen=True)
class LiquidationPreview:
    result: ValidationResult
    borrower_health_factor: Any
    borrower_debt: Optional[int]
    borrower_collateral: Optional[int]
    expected_collateral: Optional[int]


@dataclass(frozen=True)
class FlashLoanPreview:
    result: ValidationResult
    quote: Optional[FlashLoanQuote]
    pool_liquidity: Optional[int]
    receiver_balance: Optional[int] = None
    warning: Optional[str] = None


class Session:
    """Reads, derived state and event history for one connected user."""

    def __init__(
        self,
        config: AppConfig,
        user: str,
        client: Optional[ChainClient] = None,
    ) -> None:
        self._config = config
        self.user = user
        self.registry = AssetRegistry(config.assets)
        self._client: ChainClient = client if client is not None else EvmClient(config.chain)
        self.reader = LendingPoolReader(self._client, config.protocol, self.registry)

        self._generation = 0
        self._values: dict[Hashable, Any] = {}
        self._written_by: dict[Hashable, int] = {}
        self._tasks: set[asyncio.Task] = set()
        self._history: Optional[EventLedger] = None
        self._closed = False

    async def __aenter__(self) -> "Session":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def generation(self) -> int:
        return self._generation

    # ------------------------------------------------------------------
    # Read scheduling
    # ------------------------------------------------------------------

    def _apply(self, key: Hashable, value: Any, generation: int) -> bool:
        if self._closed:
            logger.debug("Discarding %s: session closed", key)
            return False
        if self._written_by.get(key, 0) > generation:
            logger.debug("Discarding stale %s from generation %d", key, generation)
            return False
        self._values[key] = value
        self._written_by[key] = generation
        return True

    async def _read(self, key: Hashable, read: Awaitable[Any], generation: int) -> None:
        try:
            value = await read
        except READ_ERRORS as e:
            logger.warning("Read %s failed for %s: %s", key, self.user, e)
            value = None
        self._apply(key, value, generation)

    async def _run_batch(self, reads: dict[Hashable, Awaitable[Any]], generation: int) -> None:
        tasks = [
            asyncio.create_task(self._read(key, read, generation))
            for key, read in reads.items()
        ]
        self._tasks.update(tasks)
        try:
            await asyncio.gather(*tasks)
        except asyncio.CancelledError:
            if not self._closed:
                raise
            logger.debug("Batch for %s cancelled by close", self.user)
        finally:
            self._tasks.difference_update(tasks)

    def _check_open(self) -> None:
        if self._closed:
            raise SessionClosedError("Session is closed")

    async def refresh(self) -> int:
        """Re-read every field the session exposes; returns the generation."""
        self._check_open()
        self._generation += 1
        generation = self._generation
        user = self.user

        await self._run_batch(
            {
                "supported_assets": self.reader.get_supported_assets(),
                "collateral_usd": self.reader.get_user_total_collateral_usd(user),
                "debt_usd": self.reader.get_user_total_debt_usd(user),
                "available_usd": self.reader.get_user_available_borrows_usd(user),
                "health_factor": self.reader.calculate_health_factor(user),
            },
            generation,
        )

        if self._closed:
            return generation

        reads: dict[Hashable, Awaitable[Any]] = {}
        for asset in self.asset_addresses:
            reads[_key("reserve", asset)] = self.reader.get_asset_data(asset)
            reads[_key("price", asset)] = self.reader.get_asset_price(asset)
            reads[_key("deposit", asset)] = self.reader.get_effective_user_deposit(asset, user)
            reads[_key("borrow", asset)] = self.reader.get_effective_user_borrow_balance(asset, user)
            reads[_key("wallet", asset)] = self.reader.balance_of(asset, user)
            reads[_key("allowance", asset)] = self.reader.allowance(asset, user)
        await self._run_batch(reads, generation)

        logger.debug("Refresh %d for %s complete", generation, user)
        return generation

    # ------------------------------------------------------------------
    # Snapshot
    # ------------------------------------------------------------------

    @property
    def asset_addresses(self) -> list[str]:
        """On-chain supported assets, or the configured interactive assets
        when that read has not resolved."""
        supported = self._values.get("supported_assets")
        if supported is not None:
            return list(supported)
        return [a.address for a in self.registry if a.is_demo]

    def _resolve(self, asset: str) -> str:
        """Accept a symbol or address; return the address."""
        configured = self.registry.by_symbol(asset)
        if configured is not None:
            return configured.address
        configured = self.registry.get(asset)
        if configured is not None:
            return configured.address
        for address in self.asset_addresses:
            if address.lower() == asset.lower():
                return address
        raise ValueError(f"Unknown asset '{asset}'")

    def _asset_value(self, kind: str, asset: str) -> Any:
        return self._values.get(_key(kind, asset))

    def reserve(self, asset: str) -> Optional[AssetReserveState]:
        address = self._resolve(asset)
        state = self._asset_value("reserve", address)
        if state is None:
            return None
        return state.with_price(self._asset_value("price", address))

    @property
    def reserves(self) -> dict[str, AssetReserveState]:
        result: dict[str, AssetReserveState] = {}
        for address in self.asset_addresses:
            state = self.reserve(address)
            if state is not None:
                result[address.lower()] = state
        return result

    @property
    def summary(self) -> UserRiskSummary:
        return build_risk_summary(
            self._values.get("collateral_usd"),
            self._values.get("debt_usd"),
            self._values.get("available_usd"),
            self._values.get("health_factor"),
        )

    @property
    def positions(self) -> list[UserAssetPosition]:
        positions = []
        for address in self.asset_addresses:
            reserve = self._asset_value("reserve", address)
            decimals = reserve.decimals if reserve else self.registry.decimals_for(address)
            positions.append(
                UserAssetPosition(
                    asset=address,
                    symbol=self.registry.symbol_for(address),
                    decimals=decimals,
                    deposit=self._asset_value("deposit", address),
                    borrow=self._asset_value("borrow", address),
                )
            )
        return positions

    def wallet_balance(self, asset: str) -> Optional[int]:
        return self._asset_value("wallet", self._resolve(asset))

    def allowance(self, asset: str) -> Optional[int]:
        return self._asset_value("allowance", self._resolve(asset))

    def needs_approval(self, asset: str, amount: int) -> bool:
        return needs_approval(self.allowance(asset), amount)

    def overview(self) -> AccountOverview:
        return build_overview(
            self.summary,
            self.positions,
            self.reserves,
            self._config.monitor.health_thresholds,
            self._config.protocol.oracle_decimals,
        )

    def markets(self) -> tuple[ReserveLine, ...]:
        """Every resolved reserve with the user's borrowable amount of it."""
        return build_market(
            self.reserves.values(),
            self._values.get("available_usd"),
            self._config.protocol.oracle_decimals,
        )

    # ------------------------------------------------------------------
    # Action validation
    # ------------------------------------------------------------------

    def guard_context(self, asset: str) -> GuardContext:
        address = self._resolve(asset)
        reserve = self.reserve(address)
        decimals = reserve.decimals if reserve else self.registry.decimals_for(address)
        return GuardContext(
            decimals=decimals,
            reserve=reserve,
            wallet_balance=self._asset_value("wallet", address),
            deposit_balance=self._asset_value("deposit", address),
            borrow_balance=self._asset_value("borrow", address),
            available_borrows_usd=self._values.get("available_usd"),
            health_factor=self.summary.health_factor,
            min_health_factor=Decimal(str(self._config.guard.min_health_factor_for_borrow)),
        )

    def form(self, kind: ActionKind, asset: str) -> ActionForm:
        return ActionForm(kind, self.guard_context(asset))

    async def preview_liquidation(
        self,
        borrower: str,
        debt_asset: str,
        collateral_asset: str,
        amount_text: str,
    ) -> LiquidationPreview:
        """Validate a liquidation of ``borrower`` against fresh reads."""
        self._check_open()
        debt_address = self._resolve(debt_asset)
        collateral_address = self._resolve(collateral_asset)
        self._generation += 1
        generation = self._generation

        keys = {
            "hf": _key("liq_hf", borrower),
            "debt_usd": _key("liq_debt_usd", borrower),
            "debt": _key("liq_debt", borrower, debt_address),
            "collateral": _key("liq_collateral", borrower, collateral_address),
            "debt_price": _key("price", debt_address),
            "collateral_price": _key("price", collateral_address),
            "collateral_reserve": _key("reserve", collateral_address),
            "debt_reserve": _key("reserve", debt_address),
        }
        await self._run_batch(
            {
                keys["hf"]: self.reader.calculate_health_factor(borrower),
                keys["debt_usd"]: self.reader.get_user_total_debt_usd(borrower),
                keys["debt"]: self.reader.get_effective_user_borrow_balance(
                    debt_address, borrower
                ),
                keys["collateral"]: self.reader.get_effective_user_deposit(
                    collateral_address, borrower
                ),
                keys["debt_price"]: self.reader.get_asset_price(debt_address),
                keys["collateral_price"]: self.reader.get_asset_price(collateral_address),
                keys["collateral_reserve"]: self.reader.get_asset_data(collateral_address),
                keys["debt_reserve"]: self.reader.get_asset_data(debt_address),
            },
            generation,
        )

        health_factor = health_factor_from_raw(
            self._values.get(keys["hf"]), self._values.get(keys["debt_usd"])
        )
        debt_reserve = self._values.get(keys["debt_reserve"])
        debt_decimals = (
            debt_reserve.decimals if debt_reserve else self.registry.decimals_for(debt_address)
        )
        collateral_reserve = self.reserve(collateral_address)
        debt_price = self._values.get(keys["debt_price"])
        borrower_debt = self._values.get(keys["debt"])
        borrower_collateral = self._values.get(keys["collateral"])

        result = validate_liquidation(
            amount_text,
            debt_decimals,
            health_factor,
            borrower_debt,
            borrower_collateral,
            debt_price,
            collateral_reserve,
        )
        amount = parse_units(amount_text, debt_decimals)
        expected = (
            expected_collateral_to_receive(amount, debt_price, debt_decimals, collateral_reserve)
            if amount
            else None
        )
        return LiquidationPreview(
            result=result,
            borrower_health_factor=health_factor,
            borrower_debt=borrower_debt,
            borrower_collateral=borrower_collateral,
            expected_collateral=expected,
        )

    async def preview_flash_loan(self, asset: str, amount_text: str) -> FlashLoanPreview:
        """Validate a flash loan and check the configured receiver contract.

        A receiver holding less than the fee only produces a warning.
        """
        self._check_open()
        address = self._resolve(asset)
        reserve = self.reserve(address)
        decimals = reserve.decimals if reserve else self.registry.decimals_for(address)
        liquidity = pool_available_liquidity(reserve)
        receiver = self._config.protocol.flash_loan_receiver

        result = validate_flash_loan(amount_text, decimals, liquidity)
        if result.is_valid:
            result = validate_flash_loan_receiver(receiver) or result
        if not result.is_valid:
            return FlashLoanPreview(result=result, quote=None, pool_liquidity=liquidity)

        quote = flash_loan_quote(result.amount, self._config.protocol.flash_loan_fee_bps)
        self._generation += 1
        key = _key("receiver_balance", receiver, address)
        await self._run_batch({key: self.reader.balance_of(address, receiver)}, self._generation)
        receiver_balance = self._values.get(key)
        warning = flash_loan_receiver_warning(
            receiver_balance, quote.fee, decimals, self.registry.symbol_for(address)
        )
        if warning:
            logger.warning("Flash loan of %s: %s", amount_text, warning)
        return FlashLoanPreview(
            result=result,
            quote=quote,
            pool_liquidity=liquidity,
            receiver_balance=receiver_balance,
            warning=warning,
        )

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    @property
    def history(self) -> Optional[EventLedger]:
        return self._history

    def start_history(
        self,
        on_record: Optional[RecordCallback] = None,
        on_error: Optional[ErrorCallback] = None,
    ) -> EventLedger:
        """Start the event ledger for this user; it stops with the session."""
        self._check_open()
        if self._history is None:
            self._history = EventLedger(
                self._client,
                self._config.protocol.lending_pool,
                self.registry,
                self.user,
                self._config.ledger,
                on_record=on_record,
                on_error=on_error,
            )
            self._history.start()
        return self._history

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    async def close(self) -> None:
        """Cancel pending reads and stop the event ledger.

        Unexpected errors from reads or subscriptions are re-raised once
        everything has been torn down.
        """
        if self._closed:
            return
        self._closed = True
        pending = list(self._tasks)
        for task in pending:
            task.cancel()
        results = await asyncio.gather(*pending, return_exceptions=True)
        self._tasks.clear()
        errors = [
            r for r in results
            if isinstance(r, BaseException) and not isinstance(r, asyncio.CancelledError)
        ]
        for error in errors:
            logger.error("Read for %s failed during close", self.user, exc_info=error)

        if self._history is not None:
            await self._history.stop()
        logger.debug("Session for %s closed", self.user)
        if errors:
            raise errors[0]
