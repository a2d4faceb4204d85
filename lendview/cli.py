"""Command-line interface for the lending dashboard."""
from __future__ import annotations

import argparse
import asyncio
import sys

from .analytics.fixed_point import format_token_amount
from .analytics.guard import REPAY_FULL, ActionKind, GuardState
from .analytics.risk import format_health_factor
from .config import AppConfig, load_config
from .logging_setup import configure_logging
from .models import TransactionRecord
from .services import Monitor

EXIT_INVALID = 2


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse CLI parser."""
    parser = argparse.ArgumentParser(
        prog="lendview",
        description="Position analytics and event history for a lending pool",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to config.yaml (default: config.yaml in project root)",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )
    parser.add_argument(
        "--wallet",
        default=None,
        help="Wallet label from config (default: first configured wallet)",
    )

    sub = parser.add_subparsers(dest="command")

    sub.add_parser("overview", help="Account totals, health factor and positions")
    sub.add_parser("markets", help="Reserve parameters and borrowable amounts")
    sub.add_parser("check", help="Single health check with alerts")
    sub.add_parser("report", help="Send a report covering every wallet")

    monitor_parser = sub.add_parser("monitor", help="Continuous monitoring loop")
    monitor_parser.add_argument(
        "interval",
        nargs="?",
        type=int,
        default=None,
        help="Check interval in minutes (overrides config)",
    )

    history_parser = sub.add_parser("history", help="Watch protocol events for the wallet")
    history_parser.add_argument(
        "--seconds",
        type=float,
        default=30.0,
        help="How long to watch before printing (default: 30)",
    )

    validate_parser = sub.add_parser("validate", help="Pre-check a deposit/withdraw/borrow/repay")
    validate_parser.add_argument("action", choices=[k.value for k in ActionKind])
    validate_parser.add_argument("symbol")
    validate_parser.add_argument("amount", nargs="?", default="")
    validate_parser.add_argument(
        "--max", action="store_true", help="Repay the full outstanding debt"
    )

    liq_parser = sub.add_parser("liquidation-preview", help="Pre-check a liquidation")
    liq_parser.add_argument("borrower")
    liq_parser.add_argument("debt_symbol")
    liq_parser.add_argument("collateral_symbol")
    liq_parser.add_argument("amount")

    flash_parser = sub.add_parser("flash-quote", help="Flash loan fee and repayment")
    flash_parser.add_argument("symbol")
    flash_parser.add_argument("amount")

    return parser


def _format_record(record: TransactionRecord) -> str:
    return (
        f"{record.date_formatted}  {record.event_type.value:<8} "
        f"{record.amount_formatted:>14} {record.asset_symbol:<8} {record.tx_hash}"
    )


async def _validate(monitor: Monitor, config: AppConfig, args: argparse.Namespace) -> int:
    kind = ActionKind(args.action)
    if args.max and kind is not ActionKind.REPAY:
        print("--max is only valid for repay", file=sys.stderr)
        return EXIT_INVALID

    async with monitor.session(config.wallet(args.wallet)) as session:
        await session.refresh()
        form = session.form(kind, args.symbol)
        value = REPAY_FULL if args.max else args.amount
        state = form.set_input(value)

        if state is GuardState.IDLE:
            print("Enter an amount")
            return EXIT_INVALID
        if state is not GuardState.VALID:
            print(f"{state.value}: {form.result.reason}")
            return EXIT_INVALID

        decimals = session.guard_context(args.symbol).decimals
        print(f"valid: {format_token_amount(form.result.amount, decimals)} {args.symbol}")
        if kind in (ActionKind.DEPOSIT, ActionKind.REPAY) and session.needs_approval(
            args.symbol, form.result.amount
        ):
            print("Token approval required before submitting")
        return 0


async def _run(args: argparse.Namespace) -> int:
    """Execute the selected command."""
    configure_logging(args.log_level)
    config = load_config(args.config)
    monitor = Monitor(config)

    if args.command == "overview":
        wallet = config.wallet(args.wallet)
        overview = await monitor.fetch_overview(wallet)
        print(f"{wallet.label} ({wallet.address})")
        print(monitor.format_overview(overview))
        print(overview.status.message)
    elif args.command == "markets":
        print(monitor.format_markets(await monitor.fetch_markets(config.wallet(args.wallet))))
    elif args.command == "check":
        await monitor.check_and_alert()
    elif args.command == "report":
        print(await monitor.generate_report())
    elif args.command == "monitor":
        await monitor.run_continuous(args.interval)
    elif args.command == "history":
        records = await monitor.watch_history(
            config.wallet(args.wallet),
            args.seconds,
            on_record=lambda r: print(_format_record(r)),
        )
        if not records:
            print("No transactions recorded.")
    elif args.command == "validate":
        return await _validate(monitor, config, args)
    elif args.command == "liquidation-preview":
        async with monitor.session(config.wallet(args.wallet)) as session:
            preview = await session.preview_liquidation(
                args.borrower, args.debt_symbol, args.collateral_symbol, args.amount
            )
            collateral_decimals = session.guard_context(args.collateral_symbol).decimals
        print(f"Borrower health factor: {format_health_factor(preview.borrower_health_factor)}")
        print(
            "Expected collateral: "
            f"{format_token_amount(preview.expected_collateral, collateral_decimals)} "
            f"{args.collateral_symbol}"
        )
        if not preview.result.is_valid:
            print(f"{preview.result.status.value}: {preview.result.reason}")
            return EXIT_INVALID
        print("valid")
    elif args.command == "flash-quote":
        async with monitor.session(config.wallet(args.wallet)) as session:
            await session.refresh()
            preview = await session.preview_flash_loan(args.symbol, args.amount)
            decimals = session.guard_context(args.symbol).decimals
        if preview.quote is None:
            print(f"{preview.result.status.value}: {preview.result.reason}")
            return EXIT_INVALID
        print(f"Fee: {format_token_amount(preview.quote.fee, decimals)} {args.symbol}")
        print(
            "Total to repay: "
            f"{format_token_amount(preview.quote.total_to_repay, decimals)} {args.symbol}"
        )
        if preview.warning:
            print(f"Warning: {preview.warning}")
    else:
        build_parser().print_help()
        return 1
    return 0


def main() -> None:
    """Entry point."""
    parser = build_parser()
    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    sys.exit(asyncio.run(_run(args)))
