"""Match result reporting.

Status only moves forward: SCHEDULED -> LIVE -> FINISHED. Finishing a match
recomputes its score from goal events, updates its tie and serves pending
suspensions, all in one transaction.
"""

import logging
from typing import Optional

from cupcore.discipline import record_card_event, recompute_all, serve_suspensions
from cupcore.models import EventType, MatchStatus
from cupcore.notify import TOPIC_MATCH_UPDATED, Notifier, publish_after_commit
from cupcore.roster import assert_roster_item_belongs
from cupcore.storage import (
    EventRepository,
    MatchEventORM,
    MatchORM,
    MatchRepository,
    PlayerStatRepository,
    TeamRepository,
    atomic,
)
from cupcore.ties import recalc_tie
from cupcore.validation import NotFoundError, ValidationError, require, validate_membership, validate_score

logger = logging.getLogger(__name__)


def start_match(session, match_id: int, notifier: Optional[Notifier] = None) -> MatchORM:
    """Move a match from SCHEDULED to LIVE.

    Raises:
        NotFoundError: If the match does not exist
        ValidationError: If the match is not SCHEDULED
    """
    match = MatchRepository(session).get_required(match_id)
    if match.status != MatchStatus.SCHEDULED.value:
        raise ValidationError(f"Match {match_id} cannot start from status {match.status}")

    with atomic(session):
        match.status = MatchStatus.LIVE.value
        session.flush()
        publish_after_commit(session, notifier, TOPIC_MATCH_UPDATED, match.to_payload())
    return match


def recompute_match_score(session, match_id: int) -> tuple[int, int]:
    """Set a match's score to its GOAL and PENALTY_SCORED event counts.

    Returns:
        Tuple of (team1_score, team2_score)
    """
    match = MatchRepository(session).get_required(match_id)
    event_repo = EventRepository(session)

    with atomic(session):
        match.team1_score = event_repo.count_goals(match.id, match.team1_tt_id)
        match.team2_score = event_repo.count_goals(match.id, match.team2_tt_id)
        session.flush()
    return match.team1_score, match.team2_score


def _check_event(
    session,
    match: MatchORM,
    tournament_team_id: int,
    event_type,
    roster_item_id: Optional[int],
    minute: int,
    half: int,
    assist_roster_item_id: Optional[int],
) -> EventType:
    try:
        event_type = EventType(event_type)
    except ValueError:
        raise ValidationError(f"Unknown event type: {event_type!r}")
    require(validate_membership(tournament_team_id, match.side_ids))
    if event_type.is_card and roster_item_id is None:
        raise ValidationError(f"{event_type.value} requires a roster item")
    if roster_item_id is not None:
        assert_roster_item_belongs(session, roster_item_id, tournament_team_id)
    if assist_roster_item_id is not None:
        assert_roster_item_belongs(session, assist_roster_item_id, tournament_team_id)
    if minute < 0 or half < 1:
        raise ValidationError(f"Invalid event time: half {half}, minute {minute}")
    return event_type


def record_event(
    session,
    match_id: int,
    tournament_team_id: int,
    event_type: EventType,
    roster_item_id: Optional[int] = None,
    minute: int = 0,
    half: int = 1,
    assist_roster_item_id: Optional[int] = None,
    description: Optional[str] = None,
    notifier: Optional[Notifier] = None,
) -> MatchEventORM:
    """Record an in-match event.

    Goal events update the match score; card events go through the
    discipline threshold check. Player totals are updated with the event.

    Args:
        session: Database session
        match_id: Match the event happened in
        tournament_team_id: Team the event is credited to
        event_type: Event type
        roster_item_id: Player involved (required for cards)
        minute: Match minute
        half: Half (1 or 2)
        assist_roster_item_id: Assisting player, for goals
        description: Free text
        notifier: Receives ``tmatch:updated`` and ``discipline:updated``

    Returns:
        Created MatchEventORM

    Raises:
        NotFoundError: If the match or a roster item does not exist
        ValidationError: If the event does not fit the match
    """
    match = MatchRepository(session).get_required(match_id)
    event_type = _check_event(
        session, match, tournament_team_id, event_type, roster_item_id, minute, half, assist_roster_item_id
    )
    if match.is_finished:
        raise ValidationError(f"Match {match_id} is finished; events can no longer be added")

    with atomic(session):
        event = EventRepository(session).create(
            match.id,
            tournament_team_id,
            event_type,
            roster_item_id=roster_item_id,
            minute=minute,
            half=half,
            assist_roster_item_id=assist_roster_item_id,
            description=description,
        )
        PlayerStatRepository(session).apply_event(event, 1)
        if event_type.is_goal:
            recompute_match_score(session, match.id)
            publish_after_commit(session, notifier, TOPIC_MATCH_UPDATED, match.to_payload())
        elif event_type.is_card:
            record_card_event(session, match.id, roster_item_id, event_type, notifier=notifier)

    logger.debug("Match %s: %s for team %s at %s'", match.id, event_type.value, tournament_team_id, minute)
    return event


def _rebuild_after_change(session, match: MatchORM, goals: bool, cards: bool, notifier) -> None:
    if goals:
        recompute_match_score(session, match.id)
        if match.is_finished and match.tie_id is not None:
            recalc_tie(session, match.tie_id, notifier=notifier)
        publish_after_commit(session, notifier, TOPIC_MATCH_UPDATED, match.to_payload())
    if cards:
        recompute_all(session, match.tournament_id, notifier=notifier)


def update_event(
    session,
    event_id: int,
    tournament_team_id: int,
    event_type: EventType,
    roster_item_id: Optional[int] = None,
    minute: int = 0,
    half: int = 1,
    assist_roster_item_id: Optional[int] = None,
    description: Optional[str] = None,
    notifier: Optional[Notifier] = None,
) -> MatchEventORM:
    """Replace an event's details.

    Works on finished matches too, as a correction. The old event's player
    totals are taken back and the new ones applied; the score (and the tie,
    for a finished match) is recomputed when either version is a goal, and
    suspensions are rebuilt when either version is a card.

    Raises:
        NotFoundError: If the event or a roster item does not exist
        ValidationError: If the new details do not fit the match
    """
    event_repo = EventRepository(session)
    event = event_repo.get_required(event_id)
    match = MatchRepository(session).get_required(event.match_id)
    old_type = event.type_enum
    event_type = _check_event(
        session, match, tournament_team_id, event_type, roster_item_id, minute, half, assist_roster_item_id
    )

    stats = PlayerStatRepository(session)
    with atomic(session):
        stats.apply_event(event, -1)
        event.tournament_team_id = tournament_team_id
        event.type = event_type.value
        event.roster_item_id = roster_item_id
        event.minute = minute
        event.half = half
        event.assist_roster_item_id = assist_roster_item_id
        event.description = description
        session.flush()
        stats.apply_event(event, 1)
        _rebuild_after_change(
            session,
            match,
            goals=old_type.is_goal or event_type.is_goal,
            cards=old_type.is_card or event_type.is_card,
            notifier=notifier,
        )

    logger.debug("Match %s: event %s changed from %s to %s", match.id, event.id, old_type.value, event_type.value)
    return event


def delete_event(session, event_id: int, notifier: Optional[Notifier] = None) -> None:
    """Delete an event, then rebuild what depended on it.

    Removing a goal recomputes the score (and the tie, for a finished
    match); removing a card rebuilds the tournament's suspensions. The
    event's player totals are taken back.
    """
    event_repo = EventRepository(session)
    event = event_repo.get_required(event_id)
    match = MatchRepository(session).get_required(event.match_id)
    event_type = event.type_enum

    with atomic(session):
        PlayerStatRepository(session).apply_event(event, -1)
        event_repo.delete(event)
        _rebuild_after_change(session, match, goals=event_type.is_goal, cards=event_type.is_card, notifier=notifier)


def player_stats(session, player_id: int) -> dict:
    """Get a player's goal, assist and card totals (zeros if none recorded).

    Raises:
        NotFoundError: If the player does not exist
    """
    player = TeamRepository(session).get_player(player_id)
    if player is None:
        raise NotFoundError("Player", player_id)
    stat = PlayerStatRepository(session).get(player_id)
    if stat is None:
        return {"player_id": player_id, "goals": 0, "assists": 0, "yellow_cards": 0, "red_cards": 0}
    return stat.to_dict()


def finish_match(session, match_id: int, notifier: Optional[Notifier] = None) -> MatchORM:
    """Finish a match.

    The score is recomputed from goal events, the match's tie is
    re-aggregated and suspensions of both teams' players are served.

    Raises:
        NotFoundError: If the match does not exist
        ValidationError: If the match is already FINISHED
    """
    match = MatchRepository(session).get_required(match_id)
    if match.is_finished:
        raise ValidationError(f"Match {match_id} is already finished")

    with atomic(session):
        recompute_match_score(session, match.id)
        match.status = MatchStatus.FINISHED.value
        session.flush()
        if match.tie_id is not None:
            recalc_tie(session, match.tie_id, notifier=notifier)
        serve_suspensions(session, match.id, notifier=notifier)
        publish_after_commit(session, notifier, TOPIC_MATCH_UPDATED, match.to_payload())

    logger.info(
        "Match %s finished %d-%d", match.id, match.team1_score, match.team2_score
    )
    return match


def set_score(
    session,
    match_id: int,
    team1_score: int,
    team2_score: int,
    notifier: Optional[Notifier] = None,
) -> MatchORM:
    """Override a match's score by hand.

    A finished match's tie is re-aggregated.
    """
    match = MatchRepository(session).get_required(match_id)
    require(validate_score(team1_score, team2_score))

    with atomic(session):
        match.team1_score = team1_score
        match.team2_score = team2_score
        session.flush()
        if match.is_finished and match.tie_id is not None:
            recalc_tie(session, match.tie_id, notifier=notifier)
        publish_after_commit(session, notifier, TOPIC_MATCH_UPDATED, match.to_payload())
    return match
