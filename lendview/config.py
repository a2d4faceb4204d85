"""Configuration loader — reads config.yaml, interpolates env vars, validates."""
from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Frozen config dataclasses
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class HealthThresholdsConfig:
    danger: float = 1.1
    warning: float = 1.5


@dataclass(frozen=True)
class MonitorConfig:
    check_interval_minutes: int = 15
    health_thresholds: HealthThresholdsConfig = field(
        default_factory=HealthThresholdsConfig
    )


@dataclass(frozen=True)
class GuardConfig:
    # Borrowing is refused at or below this health factor. Kept above the
    # contract's liquidation boundary of 1.0.
    min_health_factor_for_borrow: float = 1.1


@dataclass(frozen=True)
class LedgerConfig:
    capacity: int = 20
    poll_interval_seconds: float = 2.0
    retry_delay_seconds: float = 5.0
    lookback_blocks: int = 0


@dataclass(frozen=True)
class WalletConfig:
    label: str = ""
    address: str = ""


@dataclass(frozen=True)
class ChainConfig:
    rpc_endpoints: tuple[str, ...] = ()
    rpc_timeout: int = 30


@dataclass(frozen=True)
class ProtocolConfig:
    lending_pool: str = ""
    oracle_decimals: int = 8
    flash_loan_fee_bps: int = 9
    flash_loan_receiver: str = ""


@dataclass(frozen=True)
class AssetConfig:
    symbol: str = ""
    address: str = ""
    decimals: int = 18
    name: str = ""
    is_demo: bool = False


@dataclass(frozen=True)
class TelegramConfig:
    enabled: bool = False
    alert_bot_token: str = ""
    log_bot_token: str = ""
    chat_id: str = ""


@dataclass(frozen=True)
class NotificationsConfig:
    telegram: TelegramConfig = field(default_factory=TelegramConfig)


@dataclass(frozen=True)
class AppConfig:
    monitor: MonitorConfig = field(default_factory=MonitorConfig)
    guard: GuardConfig = field(default_factory=GuardConfig)
    ledger: LedgerConfig = field(default_factory=LedgerConfig)
    wallets: tuple[WalletConfig, ...] = ()
    chain: ChainConfig = field(default_factory=ChainConfig)
    protocol: ProtocolConfig = field(default_factory=ProtocolConfig)
    assets: tuple[AssetConfig, ...] = ()
    notifications: NotificationsConfig = field(default_factory=NotificationsConfig)

    def wallet(self, label: str | None = None) -> WalletConfig:
        """Return the wallet with ``label``, or the first configured wallet."""
        if label is None:
            return self.wallets[0]
        for w in self.wallets:
            if w.label == label:
                return w
        raise ValueError(f"Unknown wallet '{label}'")


# ---------------------------------------------------------------------------
# Env interpolation
# ---------------------------------------------------------------------------

_ENV_VAR_RE = re.compile(r"\$\{([^}]+)}")


def _interpolate_env(value: Any) -> Any:
    """Recursively replace ${VAR} references with environment variable values."""
    if isinstance(value, str):
        return _ENV_VAR_RE.sub(lambda m: os.environ.get(m.group(1), ""), value)
    if isinstance(value, dict):
        return {k: _interpolate_env(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_interpolate_env(item) for item in value]
    return value


# ---------------------------------------------------------------------------
# YAML → dataclass builders
# ---------------------------------------------------------------------------


def _build_monitor(raw: dict[str, Any]) -> MonitorConfig:
    hf = raw.get("health_thresholds", {})
    return MonitorConfig(
        check_interval_minutes=int(raw.get("check_interval_minutes", 15)),
        health_thresholds=HealthThresholdsConfig(
            danger=float(hf.get("danger", 1.1)),
            warning=float(hf.get("warning", 1.5)),
        ),
    )


def _build_guard(raw: dict[str, Any]) -> GuardConfig:
    return GuardConfig(
        min_health_factor_for_borrow=float(
            raw.get("min_health_factor_for_borrow", 1.1)
        ),
    )


def _build_ledger(raw: dict[str, Any]) -> LedgerConfig:
    return LedgerConfig(
        capacity=int(raw.get("capacity", 20)),
        poll_interval_seconds=float(raw.get("poll_interval_seconds", 2.0)),
        retry_delay_seconds=float(raw.get("retry_delay_seconds", 5.0)),
        lookback_blocks=int(raw.get("lookback_blocks", 0)),
    )


def _build_wallets(raw: list[dict[str, Any]]) -> tuple[WalletConfig, ...]:
    return tuple(
        WalletConfig(label=w.get("label", ""), address=w.get("address", ""))
        for w in raw
    )


def _build_chain(raw: dict[str, Any]) -> ChainConfig:
    return ChainConfig(
        rpc_endpoints=tuple(raw.get("rpc_endpoints", [])),
        rpc_timeout=int(raw.get("rpc_timeout", 30)),
    )


def _build_protocol(raw: dict[str, Any]) -> ProtocolConfig:
    return ProtocolConfig(
        lending_pool=raw.get("lending_pool", ""),
        oracle_decimals=int(raw.get("oracle_decimals", 8)),
        flash_loan_fee_bps=int(raw.get("flash_loan_fee_bps", 9)),
        flash_loan_receiver=raw.get("flash_loan_receiver", ""),
    )


def _build_assets(raw: list[dict[str, Any]]) -> tuple[AssetConfig, ...]:
    assets: list[AssetConfig] = []
    for a in raw:
        assets.append(
            AssetConfig(
                symbol=a.get("symbol", ""),
                address=a.get("address", ""),
                decimals=int(a.get("decimals", 18)),
                name=a.get("name", ""),
                is_demo=bool(a.get("is_demo", False)),
            )
        )
    return tuple(assets)


def _build_notifications(raw: dict[str, Any]) -> NotificationsConfig:
    tg = raw.get("telegram", {})
    return NotificationsConfig(
        telegram=TelegramConfig(
            enabled=bool(tg.get("enabled", False)),
            alert_bot_token=tg.get("alert_bot_token", ""),
            log_bot_token=tg.get("log_bot_token", ""),
            chat_id=str(tg.get("chat_id", "")),
        ),
    )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(config_path: str | Path | None = None) -> AppConfig:
    """Load and validate application configuration from YAML + .env.

    Args:
        config_path: Path to config.yaml. Defaults to ``config.yaml`` in the
            project root (two levels up from this file).
    """
    load_dotenv()

    if config_path is None:
        config_path = Path(__file__).resolve().parent.parent / "config.yaml"
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path) as f:
        raw = yaml.safe_load(f) or {}

    raw = _interpolate_env(raw)

    cfg = AppConfig(
        monitor=_build_monitor(raw.get("monitor", {})),
        guard=_build_guard(raw.get("guard", {})),
        ledger=_build_ledger(raw.get("ledger", {})),
        wallets=_build_wallets(raw.get("wallets", [])),
        chain=_build_chain(raw.get("chain", {})),
        protocol=_build_protocol(raw.get("protocol", {})),
        assets=_build_assets(raw.get("assets", [])),
        notifications=_build_notifications(raw.get("notifications", {})),
    )

    _validate(cfg)
    logger.info("Configuration loaded from %s", config_path)
    return cfg


def _validate(cfg: AppConfig) -> None:
    """Raise on invalid configuration."""
    if not cfg.wallets:
        raise ValueError("At least one wallet must be configured")

    for wallet in cfg.wallets:
        if not wallet.address:
            raise ValueError(f"Wallet '{wallet.label}' has no address")

    if not cfg.chain.rpc_endpoints:
        raise ValueError("At least one RPC endpoint must be configured")

    if not cfg.protocol.lending_pool:
        raise ValueError("protocol.lending_pool address is required")

    seen: set[str] = set()
    for asset in cfg.assets:
        if not asset.address:
            raise ValueError(f"Asset '{asset.symbol}' has no address")
        key = asset.address.lower()
        if key in seen:
            raise ValueError(f"Duplicate asset address '{asset.address}'")
        seen.add(key)

    if cfg.guard.min_health_factor_for_borrow <= 1.0:
        raise ValueError("guard.min_health_factor_for_borrow must be above 1.0")

    if cfg.ledger.capacity < 1:
        raise ValueError("ledger.capacity must be at least 1")

    thresholds = cfg.monitor.health_thresholds
    if thresholds.danger > thresholds.warning:
        raise ValueError("monitor.health_thresholds.danger must not exceed warning")
