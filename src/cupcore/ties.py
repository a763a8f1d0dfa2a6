"""Tie aggregation across legs."""

import logging
from typing import Iterable, Optional

from cupcore.models import MatchStatus, TieResult
from cupcore.notify import TOPIC_TIE_UPDATED, Notifier, publish_after_commit
from cupcore.storage import MatchORM, MatchRepository, TieORM, TieRepository, atomic

logger = logging.getLogger(__name__)


def aggregate_legs(tie: TieORM, legs: Iterable[MatchORM]) -> tuple[int, int, int]:
    """Sum leg scores per tie side.

    A leg's score is credited by team identity, so legs played with home
    and away reversed count the same. A leg with only one of the tie's
    teams still credits that team.

    Args:
        tie: Tie whose sides receive the goals
        legs: FINISHED matches of the tie

    Returns:
        Tuple of (side1 total, side2 total, legs counted)
    """
    side1 = 0
    side2 = 0
    counted = 0
    for match in legs:
        counted += 1
        for tt_id, score in ((match.team1_tt_id, match.team1_score), (match.team2_tt_id, match.team2_score)):
            if tt_id is None:
                continue
            if tt_id == tie.team1_tt_id:
                side1 += score or 0
            elif tt_id == tie.team2_tt_id:
                side2 += score or 0
    return side1, side2, counted


def decide_winner(tie: TieORM, side1: int, side2: int) -> Optional[int]:
    """Return the side with the strictly greater aggregate, or None if level."""
    if side1 > side2:
        return tie.team1_tt_id
    if side2 > side1:
        return tie.team2_tt_id
    return None


def recalc_tie(session, tie_id: int, notifier: Optional[Notifier] = None) -> TieResult:
    """Recompute a tie's aggregate and winner from its FINISHED legs.

    Only the tie's cached aggregate and winner are written; matches are
    never modified, so repeated calls give the same result.

    Args:
        session: Database session
        tie_id: Tie to recompute
        notifier: Receives ``tie:updated``

    Returns:
        TieResult with the aggregate and winner

    Raises:
        NotFoundError: If the tie does not exist
    """
    tie = TieRepository(session).get_required(tie_id)
    legs = MatchRepository(session).get_by_tie(tie_id, status=MatchStatus.FINISHED)

    side1, side2, counted = aggregate_legs(tie, legs)
    result = TieResult(
        tie_id=tie.id,
        side1=side1,
        side2=side2,
        winner_tt_id=decide_winner(tie, side1, side2),
        legs_counted=counted,
    )

    with atomic(session):
        tie.aggregate1 = result.side1
        tie.aggregate2 = result.side2
        tie.winner_tt_id = result.winner_tt_id
        session.flush()
        publish_after_commit(session, notifier, TOPIC_TIE_UPDATED, result.to_payload())

    logger.debug("Recalculated %s", result)
    return result
