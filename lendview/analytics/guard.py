"""Pre-submission validation of user actions — pure functions, no I/O.

Each validator returns a ``ValidationResult``; expected problems (bad input,
insufficient balance, unresolved reads) never raise.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Optional, Union

from ..models import (
    AssetReserveState,
    FiniteHealthFactor,
    HealthFactor,
    ReasonCode,
    ValidationResult,
    ValidationStatus,
)
from .fixed_point import (
    BPS_DENOMINATOR,
    DEFAULT_TOKEN_DISPLAY_DECIMALS,
    HEALTH_FACTOR_DECIMALS,
    WAD,
    format_token_amount,
    parse_units,
)
from .risk import available_to_borrow

logger = logging.getLogger(__name__)

DEFAULT_MIN_HEALTH_FACTOR_FOR_BORROW = Decimal("1.1")
DEFAULT_FLASH_LOAN_FEE_BPS = 9
ZERO_ADDRESS = "0x" + "0" * 40


class ActionKind(str, Enum):
    DEPOSIT = "deposit"
    WITHDRAW = "withdraw"
    BORROW = "borrow"
    REPAY = "repay"


@dataclass(frozen=True)
class ExactAmount:
    """A user-entered decimal amount, e.g. ``"12.5"``."""

    text: str


@dataclass(frozen=True)
class RepayFull:
    """Repay the whole outstanding debt, whatever it is when validated."""


REPAY_FULL = RepayFull()

RepayInput = Union[ExactAmount, RepayFull]


def _display(raw: int, decimals: int) -> str:
    return format_token_amount(raw, decimals, DEFAULT_TOKEN_DISPLAY_DECIMALS)


def _parse_positive(text: str, decimals: int) -> tuple[Optional[int], Optional[ValidationResult]]:
    amount = parse_units(text, decimals)
    if amount is None:
        return None, ValidationResult.invalid(
            ReasonCode.INVALID_AMOUNT, "Amount is not a valid number"
        )
    if amount <= 0:
        return None, ValidationResult.invalid(
            ReasonCode.NON_POSITIVE_AMOUNT, "Amount must be greater than 0"
        )
    return amount, None


def _health_factor_floor(min_health_factor: Decimal | float) -> int:
    return int(Decimal(str(min_health_factor)).scaleb(HEALTH_FACTOR_DECIMALS))


# ---------------------------------------------------------------------------
# Deposit / withdraw / borrow / repay
# ---------------------------------------------------------------------------


def validate_deposit(
    amount_text: str, decimals: int, wallet_balance: Optional[int]
) -> ValidationResult:
    amount, error = _parse_positive(amount_text, decimals)
    if error:
        return error
    if wallet_balance is None:
        return ValidationResult.pending("Waiting for wallet balance")
    if amount > wallet_balance:
        return ValidationResult.invalid(
            ReasonCode.EXCEEDS_WALLET_BALANCE,
            f"Amount exceeds wallet balance ({_display(wallet_balance, decimals)})",
        )
    return ValidationResult.valid(amount)


def validate_withdraw(
    amount_text: str, decimals: int, deposit_balance: Optional[int]
) -> ValidationResult:
    amount, error = _parse_positive(amount_text, decimals)
    if error:
        return error
    if deposit_balance is None:
        return ValidationResult.pending("Waiting for deposit balance")
    if amount > deposit_balance:
        return ValidationResult.invalid(
            ReasonCode.EXCEEDS_DEPOSIT,
            f"Amount exceeds withdrawable balance ({_display(deposit_balance, decimals)})",
        )
    return ValidationResult.valid(amount)


def validate_borrow(
    amount_text: str,
    reserve: Optional[AssetReserveState],
    available_borrows_usd: Optional[int],
    health_factor: Optional[HealthFactor],
    min_health_factor: Decimal | float = DEFAULT_MIN_HEALTH_FACTOR_FOR_BORROW,
) -> ValidationResult:
    """Validate a borrow against the health-factor floor and the dual cap.

    The cap is ``min(collateral-implied amount, pool liquidity)``.
    """
    if reserve is None:
        return ValidationResult.pending("Waiting for reserve data")
    amount, error = _parse_positive(amount_text, reserve.decimals)
    if error:
        return error
    if health_factor is None:
        return ValidationResult.pending("Waiting for health factor")
    if isinstance(health_factor, FiniteHealthFactor) and (
        health_factor.raw <= _health_factor_floor(min_health_factor)
    ):
        return ValidationResult.invalid(
            ReasonCode.HEALTH_FACTOR_TOO_LOW,
            "Health factor too low; borrowing could lead to liquidation",
        )
    if not reserve.is_supported:
        return ValidationResult.invalid(
            ReasonCode.ASSET_NOT_BORROWABLE, f"{reserve.symbol} is not available for borrowing"
        )
    final_cap = available_to_borrow(reserve, available_borrows_usd)
    if final_cap is None:
        return ValidationResult.pending("Waiting for price and borrow capacity")
    if amount > final_cap:
        return ValidationResult.invalid(
            ReasonCode.EXCEEDS_BORROW_CAPACITY,
            f"Amount exceeds the borrowable limit for this asset "
            f"({_display(final_cap, reserve.decimals)})",
        )
    return ValidationResult.valid(amount)


def validate_repay(
    repay: RepayInput,
    decimals: int,
    wallet_balance: Optional[int],
    borrow_balance: Optional[int],
) -> ValidationResult:
    """Validate a repayment.

    ``RepayFull`` resolves to the current outstanding debt and so is never
    rejected for exceeding it; the wallet must still cover it.
    """
    if isinstance(repay, RepayFull):
        if borrow_balance is None:
            return ValidationResult.pending("Waiting for outstanding debt")
        if borrow_balance <= 0:
            return ValidationResult.invalid(ReasonCode.NO_DEBT, "No outstanding debt to repay")
        amount = borrow_balance
    else:
        amount, error = _parse_positive(repay.text, decimals)
        if error:
            return error
        if borrow_balance is None:
            return ValidationResult.pending("Waiting for outstanding debt")

    if wallet_balance is None:
        return ValidationResult.pending("Waiting for wallet balance")
    if amount > wallet_balance:
        return ValidationResult.invalid(
            ReasonCode.EXCEEDS_WALLET_BALANCE,
            f"Amount exceeds wallet balance ({_display(wallet_balance, decimals)})",
        )
    if isinstance(repay, ExactAmount) and amount > borrow_balance:
        return ValidationResult.invalid(
            ReasonCode.EXCEEDS_DEBT,
            f"Amount exceeds outstanding debt ({_display(borrow_balance, decimals)})",
        )
    return ValidationResult.valid(amount)


def needs_approval(allowance: Optional[int], amount: int) -> bool:
    """Whether the pool must be approved to pull ``amount`` of the token first."""
    return allowance is None or allowance < amount


# ---------------------------------------------------------------------------
# Liquidation and flash loans
# ---------------------------------------------------------------------------


def expected_collateral_to_receive(
    debt_to_cover: int,
    debt_price: Optional[int],
    debt_decimals: int,
    collateral: Optional[AssetReserveState],
) -> Optional[int]:
    """Collateral units a liquidator receives for covering ``debt_to_cover``.

    value = debt value × (10000 + liquidation bonus) / 10000, converted into
    collateral units at the collateral's oracle price.
    """
    if debt_price is None or collateral is None or collateral.price is None:
        return None
    if debt_price <= 0 or collateral.price <= 0 or debt_to_cover <= 0:
        return 0
    debt_value_usd = debt_to_cover * debt_price // 10**debt_decimals
    bonus_value_usd = (
        debt_value_usd * (BPS_DENOMINATOR + collateral.liquidation_bonus) // BPS_DENOMINATOR
    )
    return bonus_value_usd * 10**collateral.decimals // collateral.price


def validate_liquidation(
    amount_text: str,
    debt_decimals: int,
    borrower_health_factor: Optional[HealthFactor],
    borrower_debt: Optional[int],
    borrower_collateral: Optional[int],
    debt_price: Optional[int],
    collateral: Optional[AssetReserveState],
) -> ValidationResult:
    amount, error = _parse_positive(amount_text, debt_decimals)
    if error:
        return error
    if borrower_health_factor is None or borrower_debt is None or borrower_collateral is None:
        return ValidationResult.pending("Waiting for borrower position")
    if not isinstance(borrower_health_factor, FiniteHealthFactor) or (
        borrower_health_factor.raw >= WAD
    ):
        return ValidationResult.invalid(
            ReasonCode.NOT_LIQUIDATABLE,
            f"Borrower health factor ({borrower_health_factor}) is not below 1.00",
        )
    if amount > borrower_debt:
        return ValidationResult.invalid(
            ReasonCode.EXCEEDS_DEBT,
            f"Amount exceeds the borrower's debt ({_display(borrower_debt, debt_decimals)})",
        )
    expected = expected_collateral_to_receive(amount, debt_price, debt_decimals, collateral)
    if expected is None:
        return ValidationResult.pending("Waiting for prices")
    if expected <= 0 or expected > borrower_collateral:
        return ValidationResult.invalid(
            ReasonCode.INSUFFICIENT_COLLATERAL,
            "Borrower collateral is insufficient for this amount; reduce the debt to cover",
        )
    return ValidationResult.valid(amount)


@dataclass(frozen=True)
class FlashLoanQuote:
    amount: int
    fee: int
    total_to_repay: int


def flash_loan_quote(amount: int, fee_bps: int = DEFAULT_FLASH_LOAN_FEE_BPS) -> FlashLoanQuote:
    fee = amount * fee_bps // BPS_DENOMINATOR if amount > 0 else 0
    return FlashLoanQuote(amount=amount, fee=fee, total_to_repay=amount + fee)


def validate_flash_loan(
    amount_text: str, decimals: int, pool_liquidity: Optional[int]
) -> ValidationResult:
    amount, error = _parse_positive(amount_text, decimals)
    if error:
        return error
    if pool_liquidity is None:
        return ValidationResult.pending("Waiting for pool liquidity")
    if amount > pool_liquidity:
        return ValidationResult.invalid(
            ReasonCode.INSUFFICIENT_LIQUIDITY,
            f"Amount exceeds pool liquidity ({_display(pool_liquidity, decimals)})",
        )
    return ValidationResult.valid(amount)


def validate_flash_loan_receiver(receiver: Optional[str]) -> Optional[ValidationResult]:
    """Refusal when no receiver contract is configured, else ``None``."""
    if receiver and receiver.lower() != ZERO_ADDRESS:
        return None
    return ValidationResult.invalid(
        ReasonCode.RECEIVER_NOT_CONFIGURED, "Flash loan receiver contract is not configured"
    )


def flash_loan_receiver_warning(
    receiver_balance: Optional[int], fee: int, decimals: int, symbol: str
) -> Optional[str]:
    """Advisory only: the receiver repays amount plus fee, so it should
    already hold at least the fee unless the borrowed funds earn it."""
    if receiver_balance is None:
        return "Receiver balance unavailable; cannot confirm it covers the fee"
    if receiver_balance < fee:
        return (
            f"Receiver holds {_display(receiver_balance, decimals)} {symbol}, "
            f"less than the fee ({_display(fee, decimals)})"
        )
    return None


# ---------------------------------------------------------------------------
# Per-action form state
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class GuardContext:
    """Everything the four action validators read for one (user, asset)."""

    decimals: int
    reserve: Optional[AssetReserveState] = None
    wallet_balance: Optional[int] = None
    deposit_balance: Optional[int] = None
    borrow_balance: Optional[int] = None
    available_borrows_usd: Optional[int] = None
    health_factor: Optional[HealthFactor] = None
    min_health_factor: Decimal = field(default=DEFAULT_MIN_HEALTH_FACTOR_FOR_BORROW)


def evaluate(
    kind: ActionKind, value: Union[str, RepayInput], ctx: GuardContext
) -> ValidationResult:
    if kind is ActionKind.REPAY:
        repay = value if isinstance(value, (ExactAmount, RepayFull)) else ExactAmount(value)
        return validate_repay(repay, ctx.decimals, ctx.wallet_balance, ctx.borrow_balance)

    if isinstance(value, RepayFull):
        return ValidationResult.invalid(
            ReasonCode.INVALID_AMOUNT, "A full-balance amount is only valid for repay"
        )
    text = value.text if isinstance(value, ExactAmount) else value
    if kind is ActionKind.DEPOSIT:
        return validate_deposit(text, ctx.decimals, ctx.wallet_balance)
    if kind is ActionKind.WITHDRAW:
        return validate_withdraw(text, ctx.decimals, ctx.deposit_balance)
    return validate_borrow(
        text, ctx.reserve, ctx.available_borrows_usd, ctx.health_factor, ctx.min_health_factor
    )


class GuardState(str, Enum):
    IDLE = "idle"
    VALIDATING = "validating"
    VALID = "valid"
    INVALID = "invalid"


class ActionForm:
    """Validation state of one action's input.

    Every input or context change re-evaluates from scratch. The form stays
    in ``VALIDATING`` while a required read is unresolved, so it is never
    submittable on partial data.
    """

    def __init__(self, kind: ActionKind, context: GuardContext) -> None:
        self.kind = kind
        self._context = context
        self._value: Union[str, RepayInput] = ""
        self.state = GuardState.IDLE
        self.result: Optional[ValidationResult] = None

    @property
    def can_submit(self) -> bool:
        return self.state is GuardState.VALID

    def set_input(self, value: Union[str, RepayInput]) -> GuardState:
        self._value = value
        return self._evaluate()

    def set_context(self, context: GuardContext) -> GuardState:
        self._context = context
        return self._evaluate()

    def clear(self) -> None:
        self._value = ""
        self.state = GuardState.IDLE
        self.result = None

    def _evaluate(self) -> GuardState:
        if isinstance(self._value, str) and not self._value.strip():
            self.state = GuardState.IDLE
            self.result = None
            return self.state

        self.state = GuardState.VALIDATING
        self.result = evaluate(self.kind, self._value, self._context)
        if self.result.status is ValidationStatus.VALID:
            self.state = GuardState.VALID
        elif self.result.status is ValidationStatus.INVALID:
            self.state = GuardState.INVALID
        logger.debug("%s form → %s (%s)", self.kind.value, self.state.value, self.result.reason)
        return self.state
