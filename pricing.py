"""Platform fee and total cost for a driver payout.

Rounding is half-up on Decimal amounts, which matches what the web client's
`Math.round` shows for the non-negative payouts we accept, so the quote
preview and the fee persisted on a job always agree. Once a job is stored
its `platformFee` is authoritative and is never recomputed from this rate.
"""
from decimal import ROUND_HALF_UP, Decimal

import schemas
from errors import InvalidRequest

SERVICE_FEE_PERCENTAGE = Decimal("0.15")


def platform_fee(payout: float) -> int:
    if payout < 0:
        raise InvalidRequest("Payout cannot be negative.")
    fee = (Decimal(str(payout)) * SERVICE_FEE_PERCENTAGE).quantize(
        Decimal("1"), rounding=ROUND_HALF_UP
    )
    return int(fee)


def total_cost(payout: float) -> float:
    return payout + platform_fee(payout)


def quote(payout: float) -> schemas.Quote:
    fee = platform_fee(payout)
    return schemas.Quote(payout=payout, fee=fee, total=payout + fee)
