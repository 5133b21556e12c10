"""Threshold evaluation for application votes and reputation ejection.

Everything in this module is pure: callers pass the authoritative tally and
the thresholds they read inside their transaction, and get a decision back.
Percent comparisons are done by cross-multiplication so that, e.g., 3 of 5
votes meets a 60% bar exactly.
"""

from __future__ import annotations

import enum
import math
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from whitelist_vote.services.settings_service import SettingsSnapshot


class Outcome(str, enum.Enum):
    APPROVE = "approve"
    REJECT = "reject"
    UNDECIDED = "undecided"


@dataclass(frozen=True)
class VotingThresholds:
    """The subset of system settings the resolver needs."""

    min_votes_required: int
    min_participation_percent: float
    approval_threshold_percent: float
    rejection_threshold_percent: float

    @classmethod
    def from_settings(cls, row: SettingsSnapshot) -> VotingThresholds:
        return cls(
            min_votes_required=row.min_votes_required,
            min_participation_percent=row.min_participation_percent,
            approval_threshold_percent=row.approval_threshold_percent,
            rejection_threshold_percent=row.rejection_threshold_percent,
        )


@dataclass(frozen=True)
class TallyDecision:
    outcome: Outcome
    positive: int
    negative: int
    required_votes: int

    @property
    def total_votes(self) -> int:
        return self.positive + self.negative

    @property
    def positive_percent(self) -> float | None:
        if self.total_votes == 0:
            return None
        return self.positive / self.total_votes * 100


def required_votes(eligible_voters: int, thresholds: VotingThresholds) -> int:
    """Return ``max(ceil(eligible * participation%), min_votes_required)``."""
    participation = math.ceil(
        round(max(eligible_voters, 0) * thresholds.min_participation_percent / 100, 9)
    )
    return max(participation, thresholds.min_votes_required)


def evaluate_tally(
    positive: int,
    negative: int,
    eligible_voters: int,
    thresholds: VotingThresholds,
) -> TallyDecision:
    """Decide whether a tally approves, rejects or leaves the application open.

    Args:
        positive: Votes in favour
        negative: Votes against
        eligible_voters: Current size of the voting population
        thresholds: Participation and approval/rejection percentages

    Returns:
        The outcome together with the number of votes that was required.
    """
    needed = required_votes(eligible_voters, thresholds)
    total = positive + negative

    if total < needed or total == 0:
        outcome = Outcome.UNDECIDED
    elif positive * 100 >= thresholds.approval_threshold_percent * total:
        outcome = Outcome.APPROVE
    elif negative * 100 >= thresholds.rejection_threshold_percent * total:
        outcome = Outcome.REJECT
    else:
        # Minimum met but neither side clears its bar.
        outcome = Outcome.UNDECIDED

    return TallyDecision(
        outcome=outcome,
        positive=positive,
        negative=negative,
        required_votes=needed,
    )


def resolve_tally(
    positive: int,
    negative: int,
    eligible_voters: int,
    thresholds: VotingThresholds,
) -> Outcome:
    return evaluate_tally(positive, negative, eligible_voters, thresholds).outcome


@dataclass(frozen=True)
class EjectionCheck:
    should_eject: bool
    negative: float
    negative_percent: float
    threshold_percent: float
    eligible_voters: int


def evaluate_ejection(
    negative: float,
    eligible_voters: int,
    threshold_percent: float,
    *,
    min_voters: int,
) -> EjectionCheck:
    """Check a weighted negative aggregate against the ejection threshold.

    The aggregate is measured as a share of the eligible voter population; no
    ejection happens while that population is smaller than ``min_voters``.
    """
    if eligible_voters <= 0:
        percent = 0.0
    else:
        percent = negative / eligible_voters * 100

    should_eject = (
        eligible_voters >= max(min_voters, 1)
        and negative > 0
        and negative * 100 >= threshold_percent * eligible_voters
    )
    return EjectionCheck(
        should_eject=should_eject,
        negative=negative,
        negative_percent=percent,
        threshold_percent=threshold_percent,
        eligible_voters=eligible_voters,
    )
