"""Priority scoring for documentation drift.

:func:`score` is a pure function of its inputs. It rates six factors on a
0-100 scale, combines them with :class:`PriorityWeights` and maps the
result onto a recommendation bucket.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, fields
from typing import Dict, List, Mapping, Optional, Sequence, Union

from . import config
from .errors import WeightConfigurationError
from .models import CodeDiff, PriorityFactors, PriorityScore, ScoreContext, UsageMetadata

logger = logging.getLogger(__name__)

# Factor value used when the input needed to rate it is unknown.
NEUTRAL_FACTOR = 50.0

RECOMMENDATION_THRESHOLDS = (
    (90.0, "critical"),
    (70.0, "high"),
    (40.0, "medium"),
)

URGENCY_TEXT: Dict[str, str] = {
    "critical": "Update immediately",
    "high": "Update within 1 day",
    "medium": "Update within 1 week",
    "low": "Update when convenient",
}

FACTOR_REASONS: Dict[str, str] = {
    "code_complexity": "the changed code is complex",
    "usage_frequency": "the changed code is heavily used",
    "change_magnitude": "the change alters the public API",
    "documentation_coverage": "the change is poorly documented",
    "staleness": "the related documentation is stale",
    "user_feedback": "users have reported documentation issues",
}


@dataclass(frozen=True)
class PriorityWeights:
    """Relative weight of each factor. Valid weights are non-negative and sum to 1.0."""

    code_complexity: float = 0.20
    usage_frequency: float = 0.25
    change_magnitude: float = 0.25
    documentation_coverage: float = 0.15
    staleness: float = 0.10
    user_feedback: float = 0.05

    @classmethod
    def from_dict(cls, values: Mapping[str, float]) -> "PriorityWeights":
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(values) - known)
        if unknown:
            raise WeightConfigurationError(f"Unknown priority weight(s): {', '.join(unknown)}")
        try:
            return cls(**{name: float(value) for name, value in values.items()})
        except (TypeError, ValueError) as exc:
            raise WeightConfigurationError(f"Invalid priority weight value: {exc}") from exc

    def as_dict(self) -> Dict[str, float]:
        return {f.name: getattr(self, f.name) for f in fields(self)}

    def total(self) -> float:
        return sum(self.as_dict().values())

    def validate(self) -> "PriorityWeights":
        """Raise :class:`WeightConfigurationError` unless the weights are usable."""
        negative = [name for name, value in self.as_dict().items() if value < 0]
        if negative:
            raise WeightConfigurationError(f"Priority weights must be non-negative: {', '.join(negative)}")
        total = self.total()
        if abs(total - 1.0) > config.WEIGHT_SUM_EPSILON:
            raise WeightConfigurationError(
                f"Priority weights must sum to 1.0 (got {total:.4f})"
            )
        return self

    def normalized(self) -> "PriorityWeights":
        """Return a copy scaled so the weights sum to exactly 1.0."""
        total = self.total()
        if total <= 0:
            raise WeightConfigurationError("Cannot normalize weights that sum to zero")
        return PriorityWeights(**{name: value / total for name, value in self.as_dict().items()})

    def with_overrides(self, overrides: Mapping[str, float]) -> "PriorityWeights":
        """Merge *overrides* over these weights and validate the result."""
        merged = dict(self.as_dict())
        merged.update(overrides)
        return PriorityWeights.from_dict(merged).validate()


DEFAULT_WEIGHTS = PriorityWeights.from_dict(config.DEFAULT_WEIGHTS)


def configured_weights() -> PriorityWeights:
    """Default weights with the ``[scoring.weights]`` overrides from config.toml."""
    if not config.WEIGHT_OVERRIDES:
        return DEFAULT_WEIGHTS
    return DEFAULT_WEIGHTS.with_overrides(config.WEIGHT_OVERRIDES)


def _clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    return max(low, min(high, value))


# ===================================================================
# Factors
# ===================================================================

def change_magnitude(diffs: Sequence[CodeDiff]) -> float:
    counts = {level: 0 for level in ("breaking", "major", "minor", "patch")}
    for diff in diffs:
        counts[diff.impact_level] += 1

    if counts["breaking"]:
        return 100.0
    if counts["major"]:
        return min(95.0, 60.0 + 10.0 * (counts["major"] - 1))
    if counts["minor"]:
        return min(60.0, 30.0 + 5.0 * (counts["minor"] - 1))
    if counts["patch"]:
        return min(30.0, 10.0 + 2.0 * (counts["patch"] - 1))
    return 0.0


def complexity_factor(context: ScoreContext) -> float:
    if context.complexity is None:
        return NEUTRAL_FACTOR
    ceiling = max(1, context.complexity_ceiling)
    return _clamp(context.complexity / ceiling * 100.0)


def usage_factor(diffs: Sequence[CodeDiff], usage: Optional[UsageMetadata]) -> float:
    if usage is None or usage.is_empty():
        return NEUTRAL_FACTOR
    ceiling = usage.max_usage()
    if ceiling <= 0:
        return 0.0
    used = max((usage.total_for(diff.name) for diff in diffs), default=0)
    return _clamp(used / ceiling * 100.0)


def coverage_factor(documented: Optional[bool]) -> float:
    if documented is None:
        return NEUTRAL_FACTOR
    return 40.0 if documented else 100.0


def staleness_factor(context: ScoreContext) -> float:
    if context.days_since_doc_update is None:
        return NEUTRAL_FACTOR
    cap = context.staleness_cap_days if context.staleness_cap_days > 0 else config.STALENESS_CAP_DAYS
    return _clamp(context.days_since_doc_update / cap * 100.0)


def recommendation_for(overall: float) -> str:
    for threshold, bucket in RECOMMENDATION_THRESHOLDS:
        if overall >= threshold:
            return bucket
    return "low"


def suggested_action(recommendation: str, contributions: Mapping[str, float]) -> str:
    """Urgency text plus the reason(s) behind the largest weighted contributions."""
    urgency = URGENCY_TEXT[recommendation]
    if not contributions or max(contributions.values()) <= 0:
        return urgency
    top = max(contributions.values())
    dominant = [name for name, value in contributions.items() if top - value <= 1.0 and value > 0]
    reasons = " and ".join(FACTOR_REASONS[name] for name in dominant)
    return f"{urgency}: {reasons}"


# ===================================================================
# Score
# ===================================================================

def score(
    diffs: Union[CodeDiff, Sequence[CodeDiff]],
    usage: Optional[UsageMetadata],
    weights: PriorityWeights = DEFAULT_WEIGHTS,
    context: Optional[ScoreContext] = None,
) -> PriorityScore:
    """Rate how urgently the documentation for *diffs* needs updating.

    Args:
        diffs: One diff or all diffs of a file.
        usage: Project usage counts, or None when unknown.
        weights: Factor weights; validated before anything is computed.
        context: Complexity, coverage, staleness and feedback inputs.

    Returns:
        PriorityScore with ``overall`` in [0, 100].
    """
    weights.validate()
    diff_list: List[CodeDiff] = [diffs] if isinstance(diffs, CodeDiff) else list(diffs)
    context = context or ScoreContext()

    factors = PriorityFactors(
        code_complexity=round(complexity_factor(context), 2),
        usage_frequency=round(usage_factor(diff_list, usage), 2),
        change_magnitude=round(change_magnitude(diff_list), 2),
        documentation_coverage=round(coverage_factor(context.documented), 2),
        staleness=round(staleness_factor(context), 2),
        user_feedback=round(_clamp(context.feedback_score), 2),
    )
    factor_values = factors.as_dict()
    contributions = {
        name: weight * factor_values[name] for name, weight in weights.as_dict().items()
    }
    overall = round(_clamp(sum(contributions.values())), 2)
    recommendation = recommendation_for(overall)
    logger.debug("Priority %.2f (%s) for %d diff(s)", overall, recommendation, len(diff_list))

    return PriorityScore(
        overall=overall,
        factors=factors,
        recommendation=recommendation,
        suggested_action=suggested_action(recommendation, contributions),
    )
