"""Data models — all frozen (immutable)."""
from __future__ import annotations

from dataclasses import dataclass, replace
from decimal import Decimal
from enum import Enum
from typing import Optional, Union

from .analytics.fixed_point import ratio_from_wad


@dataclass(frozen=True)
class AssetReserveState:
    """Per-asset reserve fields as returned by ``getAssetData`` plus the oracle price.

    Indices and rates are RAY fixed point; ltv, liquidation_threshold,
    reserve_factor and liquidation_bonus are basis points; ``price`` is the
    8-decimal oracle price or ``None`` when that read has not resolved.
    """

    address: str
    symbol: str
    decimals: int
    is_supported: bool
    liquidity_index: int
    variable_borrow_index: int
    current_liquidity_rate: int
    current_variable_borrow_rate: int
    total_scaled_deposits: int
    total_scaled_variable_borrows: int
    ltv: int
    liquidation_threshold: int
    reserve_factor: int
    liquidation_bonus: int
    price: Optional[int] = None
    interest_rate_strategy: str = ""
    last_update_timestamp: int = 0
    current_total_reserves: int = 0
    a_token_address: str = ""

    def with_price(self, price: Optional[int]) -> "AssetReserveState":
        return replace(self, price=price)


@dataclass(frozen=True)
class UserAssetPosition:
    """Effective (index-adjusted) balances of one user in one asset."""

    asset: str
    symbol: str
    decimals: int
    deposit: Optional[int]
    borrow: Optional[int]


# ---------------------------------------------------------------------------
# Health factor
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FiniteHealthFactor:
    """Health factor with a finite value; ``raw`` is scaled by 1e18."""

    raw: int

    @property
    def value(self) -> Decimal:
        return ratio_from_wad(self.raw)

    def __str__(self) -> str:
        return f"{self.value:.2f}"


@dataclass(frozen=True)
class UnboundedHealthFactor:
    """No outstanding debt: the position cannot be liquidated."""

    def __str__(self) -> str:
        return "∞"


UNBOUNDED = UnboundedHealthFactor()

HealthFactor = Union[FiniteHealthFactor, UnboundedHealthFactor]


@dataclass(frozen=True)
class UserRiskSummary:
    """Cross-asset totals for one user. USD values use oracle decimals.

    Any field may be ``None`` when its read failed or is still pending.
    """

    total_collateral_usd: Optional[int]
    total_debt_usd: Optional[int]
    available_borrows_usd: Optional[int]
    health_factor: Optional[HealthFactor]


# ---------------------------------------------------------------------------
# Transaction history
# ---------------------------------------------------------------------------


class TransactionType(str, Enum):
    DEPOSIT = "Deposit"
    WITHDRAW = "Withdraw"
    BORROW = "Borrow"
    REPAY = "Repay"


@dataclass(frozen=True)
class TransactionRecord:
    """One protocol event relevant to the connected user."""

    id: str
    event_type: TransactionType
    asset_symbol: str
    asset_address: str
    amount: int
    amount_formatted: str
    timestamp: int
    date_formatted: str
    tx_hash: str
    log_index: int
    block_number: int
    user: str
    repayer: Optional[str] = None

    @property
    def sort_key(self) -> tuple[int, int, int]:
        """Emission order on chain."""
        return (self.timestamp, self.block_number, self.log_index)


def record_id(tx_hash: str, log_index: int) -> str:
    """Stable identity of an event: unique across logs of one transaction."""
    return f"{tx_hash.lower()}:{log_index}"


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


class ValidationStatus(str, Enum):
    VALID = "valid"
    INVALID = "invalid"
    # Required reads have not resolved; nothing to show, but not submittable.
    PENDING = "pending"


class ReasonCode(str, Enum):
    INVALID_AMOUNT = "invalid_amount"
    NON_POSITIVE_AMOUNT = "non_positive_amount"
    EXCEEDS_WALLET_BALANCE = "exceeds_wallet_balance"
    EXCEEDS_DEPOSIT = "exceeds_deposit"
    HEALTH_FACTOR_TOO_LOW = "health_factor_too_low"
    EXCEEDS_BORROW_CAPACITY = "exceeds_borrow_capacity"
    ASSET_NOT_BORROWABLE = "asset_not_borrowable"
    EXCEEDS_DEBT = "exceeds_debt"
    NO_DEBT = "no_debt"
    NOT_LIQUIDATABLE = "not_liquidatable"
    INSUFFICIENT_COLLATERAL = "insufficient_collateral"
    INSUFFICIENT_LIQUIDITY = "insufficient_liquidity"
    RECEIVER_NOT_CONFIGURED = "receiver_not_configured"
    AWAITING_DATA = "awaiting_data"


@dataclass(frozen=True)
class ValidationResult:
    status: ValidationStatus
    code: Optional[ReasonCode] = None
    reason: Optional[str] = None
    amount: Optional[int] = None

    @property
    def is_valid(self) -> bool:
        return self.status is ValidationStatus.VALID

    @classmethod
    def valid(cls, amount: int) -> "ValidationResult":
        return cls(ValidationStatus.VALID, amount=amount)

    @classmethod
    def invalid(cls, code: ReasonCode, reason: str) -> "ValidationResult":
        return cls(ValidationStatus.INVALID, code=code, reason=reason)

    @classmethod
    def pending(cls, reason: str = "Waiting for on-chain data") -> "ValidationResult":
        return cls(ValidationStatus.PENDING, code=ReasonCode.AWAITING_DATA, reason=reason)
