"""Unit tests for CLI argument parsing."""
from __future__ import annotations

import pytest

from lendview.cli import EXIT_INVALID, _validate, build_parser
from lendview.config import AppConfig
from lendview.services import Monitor

from conftest import FakeChain


class TestBuildParser:
    def test_check_command(self) -> None:
        args = build_parser().parse_args(["check"])
        assert args.command == "check"

    def test_overview_command(self) -> None:
        args = build_parser().parse_args(["--wallet", "main", "overview"])
        assert args.command == "overview"
        assert args.wallet == "main"

    def test_monitor_command_default_interval(self) -> None:
        args = build_parser().parse_args(["monitor"])
        assert args.command == "monitor"
        assert args.interval is None

    def test_monitor_command_custom_interval(self) -> None:
        args = build_parser().parse_args(["monitor", "10"])
        assert args.interval == 10

    def test_history_seconds(self) -> None:
        args = build_parser().parse_args(["history", "--seconds", "5"])
        assert args.command == "history"
        assert args.seconds == 5.0

    def test_validate_amount(self) -> None:
        args = build_parser().parse_args(["validate", "deposit", "mDAI", "150"])
        assert (args.action, args.symbol, args.amount, args.max) == ("deposit", "mDAI", "150", False)

    def test_validate_repay_max(self) -> None:
        args = build_parser().parse_args(["validate", "repay", "mUSDC", "--max"])
        assert args.max is True
        assert args.amount == ""

    def test_validate_rejects_unknown_action(self) -> None:
        with pytest.raises(SystemExit):
            build_parser().parse_args(["validate", "liquidate", "mDAI", "1"])

    def test_liquidation_preview(self) -> None:
        args = build_parser().parse_args(
            ["liquidation-preview", "0xBorrower", "mDAI", "mUSDC", "100"]
        )
        assert args.borrower == "0xBorrower"
        assert args.debt_symbol == "mDAI"
        assert args.collateral_symbol == "mUSDC"

    def test_flash_quote(self) -> None:
        args = build_parser().parse_args(["flash-quote", "mUSDC", "10000"])
        assert (args.symbol, args.amount) == ("mUSDC", "10000")

    def test_config_and_log_level_flags(self) -> None:
        args = build_parser().parse_args(["--config", "/tmp/c.yaml", "--log-level", "DEBUG", "check"])
        assert args.config == "/tmp/c.yaml"
        assert args.log_level == "DEBUG"

    def test_no_command(self) -> None:
        args = build_parser().parse_args([])
        assert args.command is None

    def test_markets_command(self) -> None:
        args = build_parser().parse_args(["--wallet", "main", "markets"])
        assert args.command == "markets"


class TestValidateCommand:
    def _args(self, *argv: str):
        return build_parser().parse_args(["validate", *argv])

    @pytest.mark.asyncio
    async def test_missing_amount_asks_for_one(
        self, sample_app_config: AppConfig, capsys: pytest.CaptureFixture
    ) -> None:
        monitor = Monitor(sample_app_config, client=FakeChain(), notifiers=[])

        code = await _validate(monitor, sample_app_config, self._args("deposit", "mDAI"))

        assert code == EXIT_INVALID
        assert capsys.readouterr().out.strip() == "Enter an amount"

    @pytest.mark.asyncio
    async def test_max_only_for_repay(
        self, sample_app_config: AppConfig, capsys: pytest.CaptureFixture
    ) -> None:
        monitor = Monitor(sample_app_config, client=FakeChain(), notifiers=[])

        code = await _validate(monitor, sample_app_config, self._args("deposit", "mDAI", "--max"))

        assert code == EXIT_INVALID
        assert "--max is only valid for repay" in capsys.readouterr().err
