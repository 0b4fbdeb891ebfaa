"""Fee and royalty calculation shared by order settlement and auctions."""

from __future__ import annotations

from dataclasses import dataclass

from ..errors import ValidationError

BPS_DENOMINATOR = 10_000
ROYALTY_CAP_BPS = 1_000
MAX_PLATFORM_FEE_BPS = 1_000
MAX_ROYALTY_BPS = BPS_DENOMINATOR


@dataclass(frozen=True)
class PaymentSplit:
    proceeds: int
    royalty: int
    fee: int

    @property
    def total(self) -> int:
        return self.proceeds + self.royalty + self.fee


def royalty_amount(price: int, rate_bps: int) -> int:
    if price < 0 or not 0 <= rate_bps <= MAX_ROYALTY_BPS:
        raise ValidationError("InvalidRoyalty", f"rate {rate_bps} outside [0, {MAX_ROYALTY_BPS}]")
    return price * rate_bps // BPS_DENOMINATOR


def validate_fee_bps(fee_bps: int) -> int:
    if not 0 <= fee_bps <= MAX_PLATFORM_FEE_BPS:
        raise ValidationError("InvalidFee", f"fee {fee_bps} outside [0, {MAX_PLATFORM_FEE_BPS}]")
    return fee_bps


def split_payment(price: int, raw_royalty: int, fee_bps: int) -> PaymentSplit:
    """Split ``price`` into seller proceeds, capped royalty and platform fee.

    All divisions truncate. The royalty cap is applied to the royalty amount
    declared by the asset contract, so a declared rate above 10% is paid as
    exactly 10% of the price.
    """
    if price < 0:
        raise ValidationError("IncorrectPrice", "price cannot be negative")
    if raw_royalty < 0:
        raise ValidationError("InvalidRoyalty", "royalty cannot be negative")
    validate_fee_bps(fee_bps)
    royalty = min(raw_royalty, price * ROYALTY_CAP_BPS // BPS_DENOMINATOR)
    fee = price * fee_bps // BPS_DENOMINATOR
    return PaymentSplit(proceeds=price - royalty - fee, royalty=royalty, fee=fee)
