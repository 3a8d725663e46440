"""
Escrow fee calculation.

The platform charges the buyer a flat fee plus a percentage of the item price
on top of the price itself. Fees are platform revenue: the seller is always
paid out the full item price.
"""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from pacmac.core.config import config
from pacmac.core.exceptions import InvalidAmount

CENTS = Decimal("0.01")


def to_cents(value: Decimal) -> Decimal:
    return value.quantize(CENTS, rounding=ROUND_HALF_UP)


def to_minor_units(value: Decimal) -> int:
    """Convert a dollar amount into integer cents for the payment processor."""
    return int(to_cents(value) * 100)


@dataclass(frozen=True)
class EscrowFees:
    price: Decimal
    flat_fee: Decimal
    percentage_rate: Decimal
    percentage_fee: Decimal
    total_fee: Decimal
    total_charge: Decimal
    seller_payout: Decimal
    total_charge_minor_units: int


def calculate_escrow_fees(
    price: Decimal | int | str,
    *,
    flat_fee: Decimal | None = None,
    rate: Decimal | None = None,
    minimum_charge_minor_units: int | None = None,
) -> EscrowFees:
    """
    Computes the fee breakdown for an item price.

    :param price: Item price in major currency units.
    :param flat_fee: Fixed fee, defaults to the configured escrow flat fee.
    :param rate: Percentage rate as a fraction (0.03 is 3%), defaults to the configured rate.
    :param minimum_charge_minor_units: Smallest chargeable amount in cents.
    :raises InvalidAmount: If the price is not positive or the total is below the processor minimum.
    """
    flat_fee = Decimal(config.escrow_flat_fee if flat_fee is None else flat_fee)
    rate = Decimal(config.escrow_percentage_rate if rate is None else rate)
    if minimum_charge_minor_units is None:
        minimum_charge_minor_units = config.minimum_charge_minor_units

    try:
        price = Decimal(str(price))
    except InvalidOperation:
        raise InvalidAmount(f"Price '{price}' is not a number.")
    if not price.is_finite() or price <= 0:
        raise InvalidAmount("Price must be greater than zero.")

    price = to_cents(price)
    flat_fee = to_cents(flat_fee)
    percentage_fee = to_cents(price * rate)
    total_fee = flat_fee + percentage_fee
    total_charge = price + total_fee

    total_charge_minor_units = to_minor_units(total_charge)
    if total_charge_minor_units < minimum_charge_minor_units:
        raise InvalidAmount(
            f"Total charge {total_charge} is below the minimum chargeable amount "
            f"of {Decimal(minimum_charge_minor_units) / 100:.2f}."
        )

    return EscrowFees(
        price=price,
        flat_fee=flat_fee,
        percentage_rate=rate,
        percentage_fee=percentage_fee,
        total_fee=total_fee,
        total_charge=total_charge,
        seller_payout=price,
        total_charge_minor_units=total_charge_minor_units,
    )
