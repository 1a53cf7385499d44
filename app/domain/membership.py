from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import IntEnum
from typing import Mapping


class MembershipCategory(IntEnum):
    FULL = 1
    ASSOCIATE = 2
    STUDENT = 3
    RETIRED = 4
    PROVISIONAL = 5
    INACTIVE = 6
    LIFE = 7


# Categories whose members must declare where and how they practise.
EMPLOYMENT_REQUIRED_CATEGORIES = frozenset({MembershipCategory.FULL, MembershipCategory.ASSOCIATE})
PRACTICES_REQUIRED_CATEGORIES = frozenset({MembershipCategory.FULL, MembershipCategory.ASSOCIATE})

DEFAULT_CURRENCY = "CAD"

BASE_PRICES: Mapping[MembershipCategory, Decimal] = {
    MembershipCategory.FULL: Decimal("500.00"),
    MembershipCategory.ASSOCIATE: Decimal("350.00"),
    MembershipCategory.STUDENT: Decimal("100.00"),
    MembershipCategory.RETIRED: Decimal("50.00"),
    MembershipCategory.PROVISIONAL: Decimal("300.00"),
    MembershipCategory.INACTIVE: Decimal("0.00"),
    MembershipCategory.LIFE: Decimal("0.00"),
}


@dataclass(frozen=True, slots=True)
class Quote:
    category: MembershipCategory
    membership_year: int
    amount: Decimal
    currency: str = DEFAULT_CURRENCY

    def to_dict(self) -> dict:
        return {
            "category": int(self.category),
            "membership_year": self.membership_year,
            "amount": str(self.amount),
            "currency": self.currency,
        }


@dataclass(frozen=True, slots=True)
class PriceTable:
    """Price lookup for a membership category.

    The product catalog lives elsewhere; this is the narrow view the
    orchestrator needs to decide whether a payment step is due.
    """

    prices: Mapping[MembershipCategory, Decimal] = field(default_factory=lambda: dict(BASE_PRICES))
    currency: str = DEFAULT_CURRENCY

    def quote(self, category: MembershipCategory, membership_year: int) -> Quote:
        amount = self.prices.get(category, Decimal("0.00"))
        return Quote(
            category=category,
            membership_year=membership_year,
            amount=amount,
            currency=self.currency,
        )
