"""
Split allocator.

Divides a title's royalty among co-authors by ownership percentage so the
shares add up to the total to the cent:

1. raw share = total * percentage / 100
2. each share is rounded to the minor unit (half-up unless configured otherwise)
3. the residual (total - sum of rounded shares) is handed out one cent at a
   time by largest fractional remainder; a negative residual takes cents
   back from the most negative remainders

Ties go to the primary author, then to the lowest contact id.
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, List
from uuid import UUID

from app.services.exceptions import SplitError
from app.services.money import MONEY_QUANTUM, ZERO, quantize_money, to_decimal

HUNDRED = Decimal("100")


@dataclass(frozen=True)
class AuthorOwnership:
    contact_id: UUID
    ownership_percentage: Decimal
    is_primary: bool = False


@dataclass(frozen=True)
class AuthorShare:
    contact_id: UUID
    ownership_percentage: Decimal
    is_primary: bool
    amount: Decimal


def validate_ownership(authors: Iterable[AuthorOwnership]) -> List[AuthorOwnership]:
    """
    Check that a title's ownership records form a complete split.

    Raises:
        SplitError: If there are no authors, a contact appears twice, a
            percentage is outside (0, 100], or the total is not exactly 100
    """
    authors = list(authors)
    if not authors:
        raise SplitError("Title has no authors")

    seen = set()
    total = ZERO
    for author in authors:
        if author.contact_id in seen:
            raise SplitError(f"Contact {author.contact_id} appears more than once")
        seen.add(author.contact_id)

        percentage = to_decimal(author.ownership_percentage)
        if percentage <= 0 or percentage > HUNDRED:
            raise SplitError(
                f"Ownership percentage {percentage} for contact {author.contact_id} is outside (0, 100]"
            )
        total += percentage

    if total != HUNDRED:
        raise SplitError(f"Ownership percentages sum to {total}, expected 100")

    return authors


def _tie_break(author: AuthorOwnership):
    return (not author.is_primary, str(author.contact_id))


def allocate_split(
    total: Decimal,
    authors: Iterable[AuthorOwnership],
    rounding: str | None = None,
) -> List[AuthorShare]:
    """
    Allocate `total` across authors so that the shares sum exactly to it.

    Args:
        total: Title royalty for the period (already rounded to the minor unit)
        authors: Ownership records for the title
        rounding: Decimal rounding constant (defaults to settings)

    Returns:
        One AuthorShare per author, in input order. All zero when total <= 0.
    """
    authors = validate_ownership(authors)
    total = to_decimal(total)

    if total <= 0:
        return [
            AuthorShare(a.contact_id, to_decimal(a.ownership_percentage), a.is_primary, ZERO)
            for a in authors
        ]

    raw = [total * to_decimal(a.ownership_percentage) / HUNDRED for a in authors]
    rounded = [quantize_money(value, rounding) for value in raw]
    remainders = [r - q for r, q in zip(raw, rounded)]

    residual = total - sum(rounded, ZERO)
    cents = int((residual / MONEY_QUANTUM).to_integral_value())

    if cents:
        # Best claim first; taking cents back walks the same order reversed
        order = sorted(
            range(len(authors)),
            key=lambda i: (-remainders[i], _tie_break(authors[i])),
            reverse=cents < 0,
        )
        step = MONEY_QUANTUM if cents > 0 else -MONEY_QUANTUM
        for n in range(abs(cents)):
            rounded[order[n % len(order)]] += step

    return [
        AuthorShare(
            contact_id=author.contact_id,
            ownership_percentage=to_decimal(author.ownership_percentage),
            is_primary=author.is_primary,
            amount=amount,
        )
        for author, amount in zip(authors, rounded)
    ]
