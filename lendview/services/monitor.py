"""Health monitoring orchestration — iterates configured wallets."""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional

import aiohttp

from ..analytics.risk import AccountOverview, HealthLevel, ReserveLine
from ..chains.evm import EvmClient
from ..config import AppConfig, WalletConfig
from ..interfaces.chain import ChainClient
from ..interfaces.notifier import Notifier
from ..ledger.reconciler import RecordCallback
from ..models import TransactionRecord
from ..notifications import TelegramNotifier
from .session import READ_ERRORS, Session

logger = logging.getLogger(__name__)

_STATUS_LABELS = {
    HealthLevel.DANGER: "🚨 DANGER",
    HealthLevel.WARNING: "⚠️ WARNING",
    HealthLevel.SAFE: "✅ Safe",
    HealthLevel.NO_DEBT: "✅ No debt",
    HealthLevel.NO_DATA: "❔ No data",
}


class Monitor:
    """Checks every configured wallet and alerts on low health factors."""

    def __init__(
        self,
        config: AppConfig,
        client: Optional[ChainClient] = None,
        notifiers: Optional[list[Notifier]] = None,
    ) -> None:
        self._config = config
        self._client: ChainClient = client if client is not None else EvmClient(config.chain)

        if notifiers is not None:
            self._notifiers = list(notifiers)
        else:
            self._notifiers = []
            if config.notifications.telegram.enabled:
                self._notifiers.append(TelegramNotifier(config.notifications.telegram))

    def session(self, wallet: WalletConfig) -> Session:
        return Session(self._config, wallet.address, self._client)

    # ------------------------------------------------------------------
    # Formatting helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _format_wallet(address: str) -> str:
        if len(address) > 16:
            return f"{address[:10]}...{address[-6:]}"
        return address

    @staticmethod
    def _now_str() -> str:
        return datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")

    @staticmethod
    def format_overview(overview: AccountOverview) -> str:
        lines = [
            f"Collateral: ${overview.total_collateral}",
            f"Debt: ${overview.total_debt}",
            f"Available to borrow: ${overview.available_borrows}",
            f"Health factor: {overview.health_factor}",
        ]
        if overview.supplied:
            lines.append("Supplied:")
            lines.extend(
                f"  {p.symbol}: {p.amount} (${p.value_usd}) · APY {p.rate}"
                for p in overview.supplied
            )
        if overview.borrowed:
            lines.append("Borrowed:")
            lines.extend(
                f"  {p.symbol}: {p.amount} (${p.value_usd}) · APR {p.rate}"
                for p in overview.borrowed
            )
        return "\n".join(lines)

    @staticmethod
    def format_markets(markets: tuple[ReserveLine, ...]) -> str:
        if not markets:
            return "No reserve data available."
        blocks = []
        for m in markets:
            borrow = "yes" if m.can_borrow else "no"
            blocks.append(
                f"{m.symbol} (${m.price})\n"
                f"  Deposits: {m.total_deposits}  Borrows: {m.total_borrows}  "
                f"Liquidity: {m.liquidity}\n"
                f"  APY {m.deposit_apy} · APR {m.borrow_apr}\n"
                f"  LTV {m.ltv} · Liq. threshold {m.liquidation_threshold} · "
                f"Reserve factor {m.reserve_factor} · Liq. bonus {m.liquidation_bonus}\n"
                f"  Borrowable: {m.available_to_borrow} (borrowing allowed: {borrow})"
            )
        return "\n".join(blocks)

    def _build_log_message(self, wallet: WalletConfig, overview: AccountOverview) -> str:
        return (
            f"📊 {wallet.label}\n"
            f"\n"
            f"{_STATUS_LABELS[overview.status.level]}\n"
            f"\n"
            f"{self.format_overview(overview)}\n"
            f"\n"
            f"{self._now_str()} UTC"
        )

    def _build_alert(self, wallet: WalletConfig, overview: AccountOverview) -> str:
        return (
            f"{_STATUS_LABELS[overview.status.level]} — HF {overview.health_factor}\n"
            f"\n"
            f"{wallet.label}\n"
            f"\n"
            f"Collateral: ${overview.total_collateral}\n"
            f"Debt: ${overview.total_debt}\n"
            f"\n"
            f"{overview.status.message}\n"
            f"\n"
            f"Wallet: {self._format_wallet(wallet.address)}\n"
            f"{self._now_str()} UTC"
        )

    # ------------------------------------------------------------------
    # Notification dispatch
    # ------------------------------------------------------------------

    async def _send_log(self, message: str, silent: bool = True) -> None:
        for notifier in self._notifiers:
            try:
                await notifier.send_log(message, silent=silent)
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                logger.error("Notifier send_log failed: %s", e)

    async def _send_alert(self, message: str, subject: str = "") -> None:
        for notifier in self._notifiers:
            try:
                await notifier.send_alert(message, subject=subject)
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                logger.error("Notifier send_alert failed: %s", e)

    # ------------------------------------------------------------------
    # Core workflows
    # ------------------------------------------------------------------

    async def fetch_overview(self, wallet: WalletConfig) -> AccountOverview:
        async with self.session(wallet) as session:
            await session.refresh()
            return session.overview()

    async def fetch_markets(self, wallet: WalletConfig) -> tuple[ReserveLine, ...]:
        async with self.session(wallet) as session:
            await session.refresh()
            return session.markets()

    async def check_and_alert(self) -> dict[str, AccountOverview]:
        """Check every wallet; alert on DANGER and WARNING health levels."""
        results: dict[str, AccountOverview] = {}

        for wallet in self._config.wallets:
            overview = await self.fetch_overview(wallet)
            results[wallet.label] = overview
            level = overview.status.level

            logger.info(
                "Position — %s · Collateral: $%s  Debt: $%s  HF: %s  Status: %s",
                wallet.label,
                overview.total_collateral,
                overview.total_debt,
                overview.health_factor,
                level.value,
            )

            await self._send_log(self._build_log_message(wallet, overview))

            if level is HealthLevel.DANGER:
                await self._send_alert(
                    self._build_alert(wallet, overview),
                    subject="🚨 DANGER: Liquidation risk!",
                )
            elif level is HealthLevel.WARNING:
                await self._send_alert(
                    self._build_alert(wallet, overview),
                    subject="⚠️ WARNING: Low health factor",
                )
            elif level is HealthLevel.NO_DATA:
                logger.warning("No health data for %s; reads failed or pending", wallet.label)

        return results

    async def generate_report(self) -> str:
        """Build and send a report covering every wallet."""
        sections: list[str] = []
        for wallet in self._config.wallets:
            overview = await self.fetch_overview(wallet)
            header = f"━━ {wallet.label} · {_STATUS_LABELS[overview.status.level]} ━━"
            sections.append(header + "\n" + self.format_overview(overview))

        report = (
            f"📋 Lending Position Report\n"
            f"\n"
            + "\n\n".join(sections)
            + f"\n\n{self._now_str()} UTC"
        )
        await self._send_log(report, silent=False)
        logger.info("Report sent")
        return report

    async def run_continuous(self, check_interval_minutes: int | None = None) -> None:
        """Run continuous monitoring loop."""
        interval = check_interval_minutes or self._config.monitor.check_interval_minutes
        logger.info("Starting continuous monitoring (checking every %d minutes)", interval)

        while True:
            try:
                await self.check_and_alert()
            except READ_ERRORS as e:
                logger.error("Error in monitoring loop: %s", e)
            await asyncio.sleep(interval * 60)

    async def watch_history(
        self,
        wallet: WalletConfig,
        seconds: float,
        on_record: Optional[RecordCallback] = None,
    ) -> tuple[TransactionRecord, ...]:
        """Run the event ledger for ``seconds`` and return what it collected."""
        async with self.session(wallet) as session:
            ledger = session.start_history(on_record=on_record)
            await asyncio.sleep(seconds)
            records = ledger.records
        logger.info("Collected %d events for %s", len(records), wallet.label)
        return records
