"""
Weight Ledger.

Keeps the Key Result weights of one Objective in a state that sums to (or
can be driven to) 100 while respecting the weights a user has pinned.

The ledger works on any pydantic model exposing ``id``, ``weight`` and
``is_weight_locked`` (``WeightedItem`` or ``KeyResult``). Every operation
returns new model copies in the input order; inputs are never mutated and
nothing is persisted here.

Weights outside [0, 100] are clamped before any arithmetic and an unset
weight (None) counts as the policy's default weight.
"""

import logging
from decimal import Decimal
from typing import List, Optional, Sequence, TypeVar

from pydantic import BaseModel

from domain.exceptions import InvalidInputError, NotFoundError
from domain.value_objects import (
    BalanceStrategy,
    WeightAdjustment,
    WeightPolicy,
    WeightValidation,
)

from .decimal_math import (
    HUNDRED,
    ZERO,
    clamp_percent,
    decimal_sum,
    quantize,
    to_decimal,
    to_float,
)

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)


class WeightLedger:
    """
    Validates and rebalances Key Result weights.

    Usage:
        ledger = WeightLedger(WeightPolicy(balance_strategy=BalanceStrategy.EQUAL))
        balanced = ledger.auto_balance(key_results)
        check = ledger.validate(balanced)
    """

    def __init__(self, policy: Optional[WeightPolicy] = None):
        self.policy = policy or WeightPolicy()

    # -------------------------------------------------------------------------
    # Read-only views
    # -------------------------------------------------------------------------

    def weight_of(self, item: BaseModel) -> Decimal:
        """Effective weight of an item: default when unset, clamped to [0, 100]."""
        raw = getattr(item, "weight", None)
        if raw is None:
            raw = self.policy.default_weight
        return clamp_percent(raw)

    def total_weight(self, items: Sequence[BaseModel]) -> float:
        """Sum of effective weights."""
        return to_float(self._total(items))

    def validate(self, items: Sequence[BaseModel]) -> WeightValidation:
        """
        Check whether weights sum to 100 within the policy tolerance.

        An empty list is trivially valid.
        """
        if not items:
            return WeightValidation(is_valid=True, message="No weighted items", total=0.0)

        total = self._total(items)
        diff = total - HUNDRED
        tolerance = to_decimal(self.policy.tolerance)

        if abs(diff) <= tolerance:
            return WeightValidation(
                is_valid=True,
                message="Weights are balanced (100%)",
                total=to_float(total),
            )

        amount = f"{abs(diff):.1f}"
        if diff > 0:
            message = f"Weights exceed 100% by {amount}% - remove {amount}%"
        else:
            message = f"Weights are under 100% by {amount}% - add {amount}% more"

        return WeightValidation(is_valid=False, message=message, total=to_float(total))

    # -------------------------------------------------------------------------
    # Manual edits
    # -------------------------------------------------------------------------

    def set_weight(self, items: Sequence[T], item_id: str, weight: float) -> List[T]:
        """
        Manually set one item's weight, clamped to [0, 100].

        Raises:
            NotFoundError: If no item has ``item_id``
            InvalidInputError: If ``weight`` is not a number
        """
        try:
            value = clamp_percent(weight)
        except (TypeError, ValueError, ArithmeticError) as e:
            raise InvalidInputError(f"Weight is not a number: {weight!r}", "weight", weight) from e

        self._require(items, item_id)
        return [
            self._with_weight(item, value) if item.id == item_id else item
            for item in items
        ]

    def set_lock(self, items: Sequence[T], item_id: str, locked: bool) -> List[T]:
        """Pin or unpin one item's weight."""
        self._require(items, item_id)
        return [
            item.model_copy(update={"is_weight_locked": locked}) if item.id == item_id else item
            for item in items
        ]

    # -------------------------------------------------------------------------
    # Rebalancing
    # -------------------------------------------------------------------------

    def auto_balance(self, items: Sequence[T]) -> List[T]:
        """
        Redistribute weight among unlocked items so the total becomes 100.

        Locked weights are never touched. The free budget is
        ``max(0, 100 - sum(locked))``; it is split proportionally to the
        unlocked items' current weights (or equally under the EQUAL strategy,
        or when they are all zero). A single item always ends at 100.
        """
        if not items:
            return []
        if len(items) == 1:
            return [self._with_weight(items[0], HUNDRED)]

        unlocked = [i for i, item in enumerate(items) if not item.is_weight_locked]
        if not unlocked:
            logger.debug("auto_balance: all weights locked, nothing to redistribute")
            return [self._clamped(item) for item in items]

        locked_total = decimal_sum(
            self.weight_of(item) for item in items if item.is_weight_locked
        )
        remaining = max(ZERO, HUNDRED - locked_total)
        unlocked_weights = {i: self.weight_of(items[i]) for i in unlocked}
        unlocked_total = decimal_sum(unlocked_weights.values())

        proportional = (
            self.policy.balance_strategy == BalanceStrategy.PROPORTIONAL
            and unlocked_total > 0
        )
        new_weights = {}
        for i in unlocked:
            if proportional:
                share = remaining * unlocked_weights[i] / unlocked_total
            else:
                share = remaining / len(unlocked)
            new_weights[i] = quantize(share, self.policy.precision)

        self._absorb_residual(new_weights, remaining)

        if locked_total >= HUNDRED:
            logger.info(
                f"auto_balance: locked weights total {locked_total}, unlocked items set to 0"
            )

        return [
            self._with_weight(item, new_weights[i]) if i in new_weights else self._clamped(item)
            for i, item in enumerate(items)
        ]

    def normalize(self, items: Sequence[T]) -> List[T]:
        """
        Scale every weight, locked or not, by ``100 / total``.

        Relative proportions are preserved. A zero total is a steady state
        and leaves the (clamped) weights unchanged.
        """
        if not items:
            return []
        if len(items) == 1:
            return [self._with_weight(items[0], HUNDRED)]

        weights = {i: self.weight_of(item) for i, item in enumerate(items)}
        total = decimal_sum(weights.values())
        if total == 0:
            logger.debug("normalize: total weight is 0, leaving weights unchanged")
            return [self._clamped(item) for item in items]

        scale = HUNDRED / total
        new_weights = {
            i: quantize(weight * scale, self.policy.precision)
            for i, weight in weights.items()
        }
        self._absorb_residual(new_weights, HUNDRED)

        return [self._with_weight(item, new_weights[i]) for i, item in enumerate(items)]

    def suggest_adjustments(self, items: Sequence[BaseModel]) -> List[WeightAdjustment]:
        """Changes that ``normalize`` would apply, for items moving by more than 0.01."""
        normalized = self.normalize(items)
        suggestions = []
        for before, after in zip(items, normalized):
            current = self.weight_of(before)
            suggested = to_decimal(after.weight)
            delta = suggested - current
            if abs(delta) > Decimal("0.01"):
                suggestions.append(WeightAdjustment(
                    item_id=before.id,
                    current_weight=to_float(current),
                    suggested_weight=to_float(suggested),
                    adjustment=to_float(delta),
                ))
        return suggestions

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _total(self, items: Sequence[BaseModel]) -> Decimal:
        return decimal_sum(self.weight_of(item) for item in items)

    def _absorb_residual(self, new_weights: dict, target: Decimal) -> None:
        """Move the rounding remainder onto the largest adjusted weight."""
        if not self.policy.absorb_rounding_residual or not new_weights or target <= 0:
            return
        residual = target - decimal_sum(new_weights.values())
        if residual == 0:
            return
        largest = max(new_weights, key=lambda i: (new_weights[i], -i))
        new_weights[largest] = clamp_percent(new_weights[largest] + residual)

    def _clamped(self, item: T) -> T:
        """Return the item, rewriting its weight only if it needed clamping."""
        raw = getattr(item, "weight", None)
        effective = self.weight_of(item)
        if raw is not None and to_decimal(raw) == effective:
            return item
        return self._with_weight(item, effective)

    @staticmethod
    def _with_weight(item: T, weight: Decimal) -> T:
        return item.model_copy(update={"weight": to_float(weight)})

    @staticmethod
    def _require(items: Sequence[BaseModel], item_id: str) -> None:
        if not any(item.id == item_id for item in items):
            raise NotFoundError("key_result", item_id)


# =============================================================================
# MODULE-LEVEL CONVENIENCE FUNCTIONS (default policy)
# =============================================================================

_default_ledger = WeightLedger()


def total_weight(items: Sequence[BaseModel]) -> float:
    """Sum of effective weights under the default policy."""
    return _default_ledger.total_weight(items)


def validate_weights(items: Sequence[BaseModel]) -> WeightValidation:
    """Validate weights under the default policy."""
    return _default_ledger.validate(items)


def auto_balance(items: Sequence[T]) -> List[T]:
    """Auto-balance weights under the default policy."""
    return _default_ledger.auto_balance(items)


def normalize_weights(items: Sequence[T]) -> List[T]:
    """Normalize weights under the default policy."""
    return _default_ledger.normalize(items)


def suggest_adjustments(items: Sequence[BaseModel]) -> List[WeightAdjustment]:
    """Suggested weight changes under the default policy."""
    return _default_ledger.suggest_adjustments(items)
