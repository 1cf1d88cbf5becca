"""Platform fee split for shipping payments (integer minor units only)."""

from dataclasses import dataclass

from lostfound.core.constants import PLATFORM_FEE_PERCENT


@dataclass(frozen=True)
class FeeSplit:
    shipping_fee: int
    tip_amount: int
    total: int
    platform_fee: int
    transfer_to_recipient: int


def platform_fee_for(total: int) -> int:
    """round(total * PLATFORM_FEE_PERCENT / 100), half-up, without floats."""
    if total < 0:
        raise ValueError("total must be non-negative")
    return (total * PLATFORM_FEE_PERCENT + 50) // 100


def compute_fee_split(shipping_fee: int, tip_amount: int = 0) -> FeeSplit:
    """
    Split a payment between the platform and the item owner.

    platform_fee + transfer_to_recipient == total always holds.
    """
    if shipping_fee < 0 or tip_amount < 0:
        raise ValueError("fee and tip must be non-negative")
    total = shipping_fee + tip_amount
    platform_fee = platform_fee_for(total)
    return FeeSplit(
        shipping_fee=shipping_fee,
        tip_amount=tip_amount,
        total=total,
        platform_fee=platform_fee,
        transfer_to_recipient=total - platform_fee,
    )
