"""
PlanPace - Fee Allocation Module.

Splits a burst budget into the media amount and the agency fee amount
according to two flags:

    client_pays_for_media: the client pays the publisher directly, so
        the agency bills the fee only and media is always 0.
    budget_includes_fees: the budget is gross (fee-inclusive); when False
        the budget is net media and the fee sits on top.

The four combinations are kept as an explicit lookup table keyed by the
(client_pays_for_media, budget_includes_fees) tuple.

Classes:
    FeeAllocator: Resolves media and fee amounts for a budget or burst.
"""

from decimal import Decimal
from typing import Callable, Dict, Tuple

from planpace.schema import Burst, FeeAllocation


HUNDRED = Decimal("100")
ZERO = Decimal("0")

_Formula = Callable[[Decimal, Decimal], Tuple[Decimal, Decimal]]


def _client_pays_gross(budget: Decimal, pct: Decimal) -> Tuple[Decimal, Decimal]:
    return ZERO, budget * pct / HUNDRED


def _client_pays_net(budget: Decimal, pct: Decimal) -> Tuple[Decimal, Decimal]:
    return ZERO, budget / (HUNDRED - pct) * pct


def _agency_pays_gross(budget: Decimal, pct: Decimal) -> Tuple[Decimal, Decimal]:
    return budget * (HUNDRED - pct) / HUNDRED, budget * pct / HUNDRED


def _agency_pays_net(budget: Decimal, pct: Decimal) -> Tuple[Decimal, Decimal]:
    return budget, budget * pct / (HUNDRED - pct)


# (client_pays_for_media, budget_includes_fees) -> (media, fee)
FEE_FORMULAS: Dict[Tuple[bool, bool], _Formula] = {
    (True, True): _client_pays_gross,
    (True, False): _client_pays_net,
    (False, True): _agency_pays_gross,
    (False, False): _agency_pays_net,
}


class FeeAllocator:
    """
    Resolves the media/fee split of a budget.

    Amounts are returned unrounded; callers prorate and aggregate first and
    round once per reporting bucket.

    Example:
        >>> allocator = FeeAllocator()
        >>> split = allocator.allocate(Decimal("20000"), Decimal("20"), False, False)
        >>> split.media_amount, split.fee_amount
        (Decimal('20000'), Decimal('5000'))
    """

    @staticmethod
    def is_usable_fee(fee_percentage: Decimal) -> bool:
        """
        Checks a fee percentage can be used as a divisor.

        The net formulas divide by ``100 - fee_percentage``, so 100 and
        above are unusable.

        Args:
            fee_percentage: Fee percentage to check.

        Returns:
            True if the percentage lies in [0, 100).
        """
        return ZERO <= fee_percentage < HUNDRED

    def allocate(
        self,
        budget: Decimal,
        fee_percentage: Decimal,
        client_pays_for_media: bool,
        budget_includes_fees: bool
    ) -> FeeAllocation:
        """
        Splits a budget into media and fee amounts.

        Args:
            budget: Burst budget.
            fee_percentage: Agency fee percentage in [0, 100).
            client_pays_for_media: Client pays the publisher directly.
            budget_includes_fees: Budget is fee-inclusive.

        Returns:
            FeeAllocation with unrounded media and fee amounts.

        Raises:
            ValueError: If the fee percentage is outside [0, 100).
        """
        if not self.is_usable_fee(fee_percentage):
            raise ValueError(
                f"Fee percentage must be in [0, 100), got {fee_percentage}"
            )

        formula = FEE_FORMULAS[(bool(client_pays_for_media), bool(budget_includes_fees))]
        media_amount, fee_amount = formula(budget, fee_percentage)
        return FeeAllocation(media_amount=media_amount, fee_amount=fee_amount)

    def allocate_burst(self, burst: Burst) -> FeeAllocation:
        """
        Splits a burst's budget using the burst's own flags.

        Production bursts skip fee allocation: the whole budget is media.

        Args:
            burst: Burst to allocate.

        Returns:
            FeeAllocation for the full burst (not yet prorated).
        """
        if burst.is_production:
            return FeeAllocation(media_amount=burst.budget_amount, fee_amount=ZERO)

        return self.allocate(
            burst.budget_amount,
            burst.fee_percentage,
            burst.client_pays_for_media,
            burst.budget_includes_fees,
        )
