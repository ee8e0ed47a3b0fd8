"""
Rollup Calculator.

Derives an Objective's progress from the weighted progress of its Key
Results, and a Key Result's progress from its metric values.

Calculation order for an Objective:
1. Manual mode: stored progress, unchanged
2. No Key Results: 0
3. Weighted average: sum(progress_i * weight_i) / sum(weight_i)
4. Round half-up to an integer

All functions are pure: same snapshots in, same number out.
"""

import logging
from collections import defaultdict
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Sequence

from domain.aggregates import (
    DEFAULT_KEY_RESULT_WEIGHT,
    KeyResult,
    MetricType,
    Objective,
    ProgressMode,
)
from domain.exceptions import InconsistentStateError

from .decimal_math import (
    HUNDRED,
    clamp_percent,
    decimal_sum,
    round_half_up,
    to_decimal,
)

logger = logging.getLogger(__name__)


class RollupCalculator:
    """
    Computes rollup progress for Objectives.

    ``default_weight`` applies to Key Results whose weight is unset, and to
    child Objectives contributing to a parent in ``rollup_hierarchy``.
    """

    def __init__(self, default_weight: float = DEFAULT_KEY_RESULT_WEIGHT):
        self.default_weight = to_decimal(default_weight)

    def compute_progress(self, objective: Objective, key_results: Sequence[KeyResult]) -> int:
        """
        Progress of one Objective from its direct Key Results.

        Args:
            objective: Objective snapshot
            key_results: Key Results owned by the objective

        Returns:
            Integer progress in [0, 100]
        """
        if objective.progress_mode == ProgressMode.MANUAL:
            return objective.progress

        return self.weighted_progress(
            (kr.progress, kr.weight) for kr in key_results
        )

    def weighted_progress(self, pairs: Iterable) -> int:
        """
        Weighted average of ``(progress, weight)`` pairs, rounded half-up.

        An unset weight uses the default weight. An empty input or a zero
        total weight yields 0.
        """
        weighted = []
        weights = []
        for progress, weight in pairs:
            w = self._weight(weight)
            weighted.append(clamp_percent(progress) * w)
            weights.append(w)

        total_weight = decimal_sum(weights)
        if total_weight == 0:
            return 0

        return round_half_up(decimal_sum(weighted) / total_weight)

    def key_result_progress(self, key_result: KeyResult, value: Optional[float] = None) -> int:
        """
        Progress of a Key Result from a metric value.

        ``complete`` metrics are binary: any value at or past the target
        is 100, anything else 0. Other metrics use the position of the value
        between the initial and target values, which also covers decreasing
        targets (target below initial). A zero range keeps the existing
        progress.
        """
        current = key_result.current_value if value is None else value

        if key_result.metric_type == MetricType.COMPLETE:
            return 100 if to_decimal(current) >= to_decimal(key_result.target_value) else 0

        initial = to_decimal(key_result.initial_value)
        span = to_decimal(key_result.target_value) - initial
        if span == 0:
            logger.debug(f"Key result {key_result.id} has a zero target range, progress kept")
            return key_result.progress

        ratio = (to_decimal(current) - initial) / span * HUNDRED
        return round_half_up(clamp_percent(ratio))

    def rollup_hierarchy(
        self,
        objectives: Sequence[Objective],
        key_results: Sequence[KeyResult],
    ) -> Dict[str, int]:
        """
        Roll progress up a tree of nested Objectives.

        Children are resolved before their parents. A rollup-mode parent
        averages its Key Results together with its child Objectives, each
        child contributing its own rolled-up progress at the default weight.
        Manual-mode objectives keep their stored progress. A parent_id that
        points outside ``objectives`` is treated as a root.

        Raises:
            InconsistentStateError: If the parent links form a cycle
        """
        by_id = {obj.id: obj for obj in objectives}
        children: Dict[str, List[str]] = defaultdict(list)
        for obj in objectives:
            if obj.parent_id and obj.parent_id in by_id:
                children[obj.parent_id].append(obj.id)

        krs_by_objective: Dict[str, List[KeyResult]] = defaultdict(list)
        for kr in key_results:
            krs_by_objective[kr.objective_id].append(kr)

        results: Dict[str, int] = {}
        for objective_id in self._children_first(by_id, children):
            obj = by_id[objective_id]
            if obj.progress_mode == ProgressMode.MANUAL:
                results[objective_id] = obj.progress
                continue

            pairs = [(kr.progress, kr.weight) for kr in krs_by_objective[objective_id]]
            pairs.extend((results[child], None) for child in children[objective_id])
            results[objective_id] = self.weighted_progress(pairs)

        return results

    def _weight(self, weight) -> Decimal:
        if weight is None:
            return self.default_weight
        return clamp_percent(weight)

    @staticmethod
    def _children_first(by_id: Dict[str, Objective], children: Dict[str, List[str]]) -> List[str]:
        """Post-order walk from every root; detects cycles."""
        order: List[str] = []
        done = set()
        visiting = set()

        def visit(node: str) -> None:
            if node in done:
                return
            if node in visiting:
                raise InconsistentStateError(f"Objective hierarchy has a cycle at {node}")
            visiting.add(node)
            for child in children[node]:
                visit(child)
            visiting.discard(node)
            done.add(node)
            order.append(node)

        for node in by_id:
            visit(node)
        return order


# =============================================================================
# MODULE-LEVEL CONVENIENCE FUNCTIONS
# =============================================================================

_default_calculator = RollupCalculator()


def compute_progress(objective: Objective, key_results: Sequence[KeyResult]) -> int:
    """Objective progress with the default weight of 25."""
    return _default_calculator.compute_progress(objective, key_results)


def key_result_progress(key_result: KeyResult, value: Optional[float] = None) -> int:
    """Key Result progress from a metric value."""
    return _default_calculator.key_result_progress(key_result, value)


def rollup_hierarchy(objectives: Sequence[Objective], key_results: Sequence[KeyResult]) -> Dict[str, int]:
    """Progress for every objective of a nested tree."""
    return _default_calculator.rollup_hierarchy(objectives, key_results)
