"""
Aggregate statistics over a set of cases.

Everything here is a pure function of its inputs and the current time, so
results are recomputed on each request from the filtered set.
"""

import math
from collections import Counter, defaultdict
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from caseflow.app.models.api.pipeline_schemas import PipelineListStatistics, PipelineStatisticsResponse
from caseflow.app.models.domain.case import CaseOutcome, LegalCase, ensure_utc, utcnow
from caseflow.app.models.domain.stage_vocabulary import StageVocabulary

SECONDS_PER_DAY = 24 * 60 * 60


def round_half_up(value: float, places: int = 0) -> float:
    factor = 10 ** places
    return math.floor(value * factor + 0.5) / factor


def count_by_outcome(cases: Iterable[LegalCase]) -> Dict[str, int]:
    """Outcome counts; a missing outcome counts as ``ongoing``."""
    return dict(Counter(case.reported_outcome for case in cases))


def list_statistics(rows: Iterable[Dict[str, Any]], vocabulary: StageVocabulary) -> PipelineListStatistics:
    """
    Stage and outcome counts from grouped count rows.

    Each row carries ``category``, ``stage``, ``outcome`` and ``count``; a
    missing stage resolves to the category's initial stage and a missing
    outcome to ``ongoing``.
    """
    by_stage: Counter = Counter()
    by_outcome: Counter = Counter()
    for row in rows:
        count = row["count"]
        by_stage[row.get("stage") or vocabulary.initial_stage(row.get("category"))] += count
        by_outcome[row.get("outcome") or CaseOutcome.ONGOING.value] += count
    return PipelineListStatistics(
        total=sum(by_stage.values()),
        by_stage=dict(by_stage),
        by_outcome=dict(by_outcome),
    )


def success_rate(won: int, lost: int, settled: int) -> float:
    """(won + settled) / completed, rounded to 2 places; 0 with no completed cases."""
    completed = won + lost + settled
    if completed == 0:
        return 0.0
    return round_half_up((won + settled) / completed, 2)


def won_amount(case: LegalCase) -> float:
    """Realized amount of a won case, falling back to the claim amount."""
    if case.end_details is not None and case.end_details.final_amount is not None:
        return case.end_details.final_amount
    return case.claim_amount or 0.0


def pipeline_statistics(
    cases: List[LegalCase],
    vocabulary: StageVocabulary,
    now: Optional[datetime] = None
) -> PipelineStatisticsResponse:
    """
    Compute the dashboard statistics for ``cases``.

    Args:
        cases: Cases already narrowed to the caller's scope and filters
        vocabulary: Stage vocabulary for resolving missing stages
        now: Reference time for days-in-stage averages

    Returns:
        PipelineStatisticsResponse
    """
    now = ensure_utc(now or utcnow())
    outcomes = count_by_outcome(cases)
    won = outcomes.get(CaseOutcome.WON.value, 0)
    lost = outcomes.get(CaseOutcome.LOST.value, 0)
    settled = outcomes.get(CaseOutcome.SETTLED.value, 0)

    by_category: Counter = Counter()
    by_stage: Dict[str, Counter] = defaultdict(Counter)
    days_totals: Dict[str, Dict[str, List[float]]] = defaultdict(lambda: defaultdict(list))
    total_claim = 0.0
    total_won = 0.0

    for case in cases:
        category = case.category or vocabulary.fallback_category
        stage = case.effective_stage(vocabulary)
        by_category[category] += 1
        by_stage[category][stage] += 1

        if case.stage_entered_at is not None:
            elapsed = (now - ensure_utc(case.stage_entered_at)).total_seconds() / SECONDS_PER_DAY
            days_totals[category][stage].append(elapsed)

        total_claim += case.claim_amount or 0.0
        if case.outcome == CaseOutcome.WON.value:
            total_won += won_amount(case)

    avg_days_in_stage = {
        category: {stage: int(round_half_up(sum(values) / len(values))) for stage, values in stages.items()}
        for category, stages in days_totals.items()
    }

    return PipelineStatisticsResponse(
        total_cases=len(cases),
        active_cases=outcomes.get(CaseOutcome.ONGOING.value, 0),
        won_cases=won,
        lost_cases=lost,
        settled_cases=settled,
        by_category=dict(by_category),
        by_stage={category: dict(stages) for category, stages in by_stage.items()},
        avg_days_in_stage=avg_days_in_stage,
        total_claim_amount=total_claim,
        total_won_amount=total_won,
        success_rate=success_rate(won, lost, settled),
    )
