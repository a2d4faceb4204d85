"""Cross-asset risk aggregation — pure functions, no I/O.

Every function accepts ``None`` for inputs whose read has not resolved (or
failed) and then returns ``None`` itself, so a missing price or total never
turns into a silently computed zero.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Iterable, Optional

from ..config import HealthThresholdsConfig
from ..models import (
    UNBOUNDED,
    AssetReserveState,
    FiniteHealthFactor,
    HealthFactor,
    UnboundedHealthFactor,
    UserAssetPosition,
    UserRiskSummary,
)
from .fixed_point import (
    DEFAULT_TOKEN_DISPLAY_DECIMALS,
    MAX_UINT256,
    NOT_AVAILABLE,
    ORACLE_PRICE_DECIMALS,
    annual_rate_to_percent,
    bps_to_percent,
    format_token_amount,
    format_usd,
    to_actual_balance,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Per-asset balances
# ---------------------------------------------------------------------------


def effective_deposit(reserve: AssetReserveState, scaled_deposit: int) -> int:
    """User's actual deposit from a scaled balance and the liquidity index."""
    return to_actual_balance(scaled_deposit, reserve.liquidity_index)


def effective_borrow_balance(reserve: AssetReserveState, scaled_debt: int) -> int:
    """User's actual debt from a scaled balance and the variable borrow index."""
    return to_actual_balance(scaled_debt, reserve.variable_borrow_index)


def total_actual_deposits(reserve: AssetReserveState) -> int:
    return to_actual_balance(reserve.total_scaled_deposits, reserve.liquidity_index)


def total_actual_borrows(reserve: AssetReserveState) -> int:
    return to_actual_balance(
        reserve.total_scaled_variable_borrows, reserve.variable_borrow_index
    )


def pool_available_liquidity(reserve: Optional[AssetReserveState]) -> Optional[int]:
    """Deposits minus borrows in actual units, clamped at zero.

    Borrows can nominally exceed deposits when the two totals were read at
    different times; the pool then has nothing to lend.
    """
    if reserve is None:
        return None
    return max(0, total_actual_deposits(reserve) - total_actual_borrows(reserve))


# ---------------------------------------------------------------------------
# Borrow capacity
# ---------------------------------------------------------------------------


def collateral_borrow_cap(
    available_borrows_usd: Optional[int],
    price: Optional[int],
    decimals: int,
) -> Optional[int]:
    """Convert the user's USD borrow headroom into units of one asset.

    ``available_borrows_usd`` and ``price`` share the oracle's 8 decimals, so
    the result is in the asset's own decimals.
    """
    if available_borrows_usd is None or price is None:
        return None
    if price <= 0:
        logger.warning("Non-positive oracle price %s; no borrow capacity", price)
        return 0
    return max(0, available_borrows_usd) * 10**decimals // price


def available_to_borrow(
    reserve: Optional[AssetReserveState],
    available_borrows_usd: Optional[int],
) -> Optional[int]:
    """Borrowable amount of this asset: min(collateral cap, pool liquidity)."""
    if reserve is None:
        return None
    cap = collateral_borrow_cap(available_borrows_usd, reserve.price, reserve.decimals)
    liquidity = pool_available_liquidity(reserve)
    if cap is None or liquidity is None:
        return None
    return min(cap, liquidity)


def can_borrow_asset(
    reserve: Optional[AssetReserveState],
    available_borrows_usd: Optional[int],
) -> bool:
    final = available_to_borrow(reserve, available_borrows_usd)
    return final is not None and final > 0 and reserve is not None and reserve.is_supported


# ---------------------------------------------------------------------------
# Health factor
# ---------------------------------------------------------------------------


def health_factor_from_raw(
    raw: Optional[int], total_debt_usd: Optional[int] = None
) -> Optional[HealthFactor]:
    """Tag a raw 1e18-scaled health factor.

    The contract reports ``2**256 - 1`` when the user has no debt. A known
    zero debt always reads as unbounded; the sentinel combined with a
    non-zero debt is inconsistent (stale reads) and yields ``None``.
    """
    if total_debt_usd == 0:
        return UNBOUNDED
    if raw is None:
        return None
    if raw == MAX_UINT256:
        if total_debt_usd is None:
            return UNBOUNDED
        logger.warning(
            "Health factor sentinel reported with non-zero debt %s; treating as unknown",
            total_debt_usd,
        )
        return None
    return FiniteHealthFactor(raw)


def format_health_factor(health_factor: Optional[HealthFactor]) -> str:
    if health_factor is None:
        return NOT_AVAILABLE
    return str(health_factor)


def build_risk_summary(
    total_collateral_usd: Optional[int],
    total_debt_usd: Optional[int],
    available_borrows_usd: Optional[int],
    raw_health_factor: Optional[int],
) -> UserRiskSummary:
    return UserRiskSummary(
        total_collateral_usd=total_collateral_usd,
        total_debt_usd=total_debt_usd,
        available_borrows_usd=available_borrows_usd,
        health_factor=health_factor_from_raw(raw_health_factor, total_debt_usd),
    )


class HealthLevel(str, Enum):
    NO_DATA = "nodata"
    NO_DEBT = "nodebt"
    DANGER = "danger"
    WARNING = "warning"
    SAFE = "safe"


@dataclass(frozen=True)
class HealthStatus:
    level: HealthLevel
    message: str


def health_status(
    summary: UserRiskSummary,
    thresholds: HealthThresholdsConfig = HealthThresholdsConfig(),
) -> HealthStatus:
    """Classify a position by its health factor."""
    hf = summary.health_factor
    if isinstance(hf, UnboundedHealthFactor) or summary.total_debt_usd == 0:
        return HealthStatus(HealthLevel.NO_DEBT, "No outstanding debt; the account is safe.")
    if hf is None:
        return HealthStatus(HealthLevel.NO_DATA, "Health factor is loading or unavailable.")
    if hf.value <= Decimal(str(thresholds.danger)):
        return HealthStatus(
            HealthLevel.DANGER,
            "Health factor is very low and liquidation is likely. "
            "Add collateral or repay debt now.",
        )
    if hf.value <= Decimal(str(thresholds.warning)):
        return HealthStatus(
            HealthLevel.WARNING,
            "Health factor is low. Consider adding collateral or repaying part of the debt.",
        )
    return HealthStatus(HealthLevel.SAFE, "The account is currently safe.")


# ---------------------------------------------------------------------------
# Account overview
# ---------------------------------------------------------------------------


def position_value_usd(
    amount: Optional[int], price: Optional[int], decimals: int
) -> Optional[int]:
    """USD value (oracle decimals) of ``amount`` units of an asset."""
    if amount is None or price is None:
        return None
    return amount * price // 10**decimals


@dataclass(frozen=True)
class PositionLine:
    symbol: str
    amount: str
    value_usd: str
    rate: str


@dataclass(frozen=True)
class AccountOverview:
    total_collateral: str
    total_debt: str
    available_borrows: str
    health_factor: str
    status: HealthStatus
    supplied: tuple[PositionLine, ...] = ()
    borrowed: tuple[PositionLine, ...] = ()


def build_overview(
    summary: UserRiskSummary,
    positions: list[UserAssetPosition],
    reserves: dict[str, AssetReserveState],
    thresholds: HealthThresholdsConfig = HealthThresholdsConfig(),
    oracle_decimals: int = ORACLE_PRICE_DECIMALS,
) -> AccountOverview:
    """Display-ready account summary with supplied and borrowed asset lines.

    Supplied lines carry the deposit APY, borrowed lines the variable borrow
    APR. Positions with zero or unknown balances are omitted.
    """
    supplied: list[PositionLine] = []
    borrowed: list[PositionLine] = []

    for pos in positions:
        reserve = reserves.get(pos.asset.lower())
        price = reserve.price if reserve else None

        if pos.deposit:
            supplied.append(
                PositionLine(
                    symbol=pos.symbol,
                    amount=format_token_amount(
                        pos.deposit, pos.decimals, DEFAULT_TOKEN_DISPLAY_DECIMALS
                    ),
                    value_usd=format_usd(
                        position_value_usd(pos.deposit, price, pos.decimals),
                        oracle_decimals,
                    ),
                    rate=annual_rate_to_percent(
                        reserve.current_liquidity_rate if reserve else None
                    ),
                )
            )
        if pos.borrow:
            borrowed.append(
                PositionLine(
                    symbol=pos.symbol,
                    amount=format_token_amount(
                        pos.borrow, pos.decimals, DEFAULT_TOKEN_DISPLAY_DECIMALS
                    ),
                    value_usd=format_usd(
                        position_value_usd(pos.borrow, price, pos.decimals),
                        oracle_decimals,
                    ),
                    rate=annual_rate_to_percent(
                        reserve.current_variable_borrow_rate if reserve else None
                    ),
                )
            )

    return AccountOverview(
        total_collateral=format_usd(summary.total_collateral_usd, oracle_decimals),
        total_debt=format_usd(summary.total_debt_usd, oracle_decimals),
        available_borrows=format_usd(summary.available_borrows_usd, oracle_decimals),
        health_factor=format_health_factor(summary.health_factor),
        status=health_status(summary, thresholds),
        supplied=tuple(supplied),
        borrowed=tuple(borrowed),
    )


# ---------------------------------------------------------------------------
# Market view
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ReserveLine:
    """Display-ready parameters of one reserve, plus what the user may borrow."""

    symbol: str
    address: str
    price: str
    total_deposits: str
    total_borrows: str
    liquidity: str
    deposit_apy: str
    borrow_apr: str
    ltv: str
    liquidation_threshold: str
    reserve_factor: str
    liquidation_bonus: str
    available_to_borrow: str
    can_borrow: bool


def build_market(
    reserves: Iterable[AssetReserveState],
    available_borrows_usd: Optional[int],
    oracle_decimals: int = ORACLE_PRICE_DECIMALS,
) -> tuple[ReserveLine, ...]:
    lines = []
    for reserve in reserves:
        decimals = reserve.decimals
        lines.append(
            ReserveLine(
                symbol=reserve.symbol,
                address=reserve.address,
                price=format_usd(reserve.price, oracle_decimals),
                total_deposits=format_token_amount(total_actual_deposits(reserve), decimals),
                total_borrows=format_token_amount(total_actual_borrows(reserve), decimals),
                liquidity=format_token_amount(pool_available_liquidity(reserve), decimals),
                deposit_apy=annual_rate_to_percent(reserve.current_liquidity_rate),
                borrow_apr=annual_rate_to_percent(reserve.current_variable_borrow_rate),
                ltv=bps_to_percent(reserve.ltv),
                liquidation_threshold=bps_to_percent(reserve.liquidation_threshold),
                reserve_factor=bps_to_percent(reserve.reserve_factor),
                liquidation_bonus=bps_to_percent(reserve.liquidation_bonus),
                available_to_borrow=format_token_amount(
                    available_to_borrow(reserve, available_borrows_usd), decimals
                ),
                can_borrow=can_borrow_asset(reserve, available_borrows_usd),
            )
        )
    return tuple(lines)
