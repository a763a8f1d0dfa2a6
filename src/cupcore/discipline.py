"""Card accumulation and suspension tracking.

Suspensions are raised when a player's same-colour card count within the
tournament's accumulation scope reaches the policy threshold, and are served
by FINISHED matches of the player's team played after the triggering match.
Each (suspension, match) serving is recorded, so a match never reduces a
suspension twice.
"""

import logging
from collections import defaultdict
from datetime import datetime
from typing import Iterable, Optional

from cupcore.models import AccumulationScope, DisciplinePolicy, EventType, SuspensionReason
from cupcore.notify import TOPIC_DISCIPLINE_UPDATED, Notifier, publish_after_commit
from cupcore.storage import (
    EventRepository,
    MatchORM,
    MatchRepository,
    RosterRepository,
    SuspensionORM,
    SuspensionRepository,
    TournamentRepository,
    atomic,
    tournament_lock,
)
from cupcore.validation import ValidationError, require, validate_membership

logger = logging.getLogger(__name__)


def card_type_of(card_type) -> EventType:
    """Parse a card type, rejecting anything but YELLOW_CARD and RED_CARD."""
    try:
        card_type = EventType(card_type)
    except ValueError:
        raise ValidationError(f"Unknown card type: {card_type!r}")
    if not card_type.is_card:
        raise ValidationError(f"{card_type.value} is not a card event")
    return card_type


def scope_for_match(policy: DisciplinePolicy, match: MatchORM) -> tuple[str, Optional[int], Optional[int]]:
    """Resolve the accumulation scope a card in ``match`` counts towards.

    A ROUND or GROUP scope on a match without a round or group falls back
    to the whole tournament.

    Returns:
        Tuple of (scope_key, round_id, group_id); round_id and group_id are
        the filters to count cards with
    """
    scope = AccumulationScope(policy.scope)
    if scope == AccumulationScope.ROUND and match.round_id is not None:
        return f"ROUND:{match.round_id}", match.round_id, None
    if scope == AccumulationScope.GROUP and match.group_id is not None:
        return f"GROUP:{match.group_id}", None, match.group_id
    return AccumulationScope.TOURNAMENT.value, None, None


def _create_suspension(
    session, tournament_id: int, roster_item_id: int, card_type: EventType,
    policy: DisciplinePolicy, match: MatchORM, scope_key: str,
) -> SuspensionORM:
    suspension = SuspensionRepository(session).create(
        tournament_id=tournament_id,
        roster_item_id=roster_item_id,
        reason=SuspensionReason.for_card(card_type),
        starts_after=match.date,
        remaining_games=policy.suspension_games,
        trigger_match_id=match.id,
        scope_key=scope_key,
    )
    logger.info(
        "Suspension %s: roster item %s, %s, %d game(s) after match %s",
        suspension.id, roster_item_id, suspension.reason, suspension.remaining_games, match.id,
    )
    return suspension


def record_card_event(
    session,
    match_id: int,
    roster_item_id: int,
    card_type: EventType,
    notifier: Optional[Notifier] = None,
) -> Optional[SuspensionORM]:
    """Apply the threshold rule after a card event has been stored.

    Counts the player's cards of the same colour within the scope. A
    suspension is created when the count equals the threshold for that
    colour and the player has no suspension for that reason in the scope
    yet. Yellows and reds are counted independently.

    Args:
        session: Database session
        match_id: Match the card was shown in
        roster_item_id: Carded player
        card_type: YELLOW_CARD or RED_CARD
        notifier: Receives ``discipline:updated`` when a suspension is created

    Returns:
        The created SuspensionORM, or None

    Raises:
        NotFoundError: If the match or roster item does not exist
        ValidationError: If the card type is invalid or the player does not
            play in the match
    """
    card_type = card_type_of(card_type)
    match = MatchRepository(session).get_required(match_id)
    roster_item = RosterRepository(session).get_required(roster_item_id)
    require(validate_membership(roster_item.tournament_team_id, match.side_ids))

    tournament = TournamentRepository(session).get_required(match.tournament_id)
    policy = tournament.policy
    if not policy.enabled:
        return None

    scope_key, round_id, group_id = scope_for_match(policy, match)
    threshold = policy.threshold_for(card_type)
    carded_in = EventRepository(session).get_player_cards(
        roster_item_id, card_type, tournament.id, round_id=round_id, group_id=group_id
    )
    if len(carded_in) != threshold:
        return None
    # Cards may be entered out of date order; anchor to the threshold card
    trigger = carded_in[threshold - 1]

    reason = SuspensionReason.for_card(card_type)
    suspension_repo = SuspensionRepository(session)
    if suspension_repo.exists_in_scope(roster_item_id, reason, scope_key):
        return None

    with atomic(session):
        suspension = _create_suspension(
            session, tournament.id, roster_item_id, card_type, policy, trigger, scope_key
        )
        _serve_finished(session, suspension, roster_item.tournament_team_id)
        publish_after_commit(session, notifier, TOPIC_DISCIPLINE_UPDATED, {
            "match_id": match.id,
            "suspensions": [suspension.to_payload()],
        })
    return suspension


def _apply_serving(suspension_repo, suspension: SuspensionORM, match: MatchORM) -> bool:
    if suspension.tournament_id != match.tournament_id:
        return False
    if not suspension.is_active or not suspension.starts_after < match.date:
        return False
    if suspension_repo.has_serving(suspension.id, match.id):
        return False

    suspension.remaining_games -= 1
    if suspension.remaining_games <= 0:
        suspension.remaining_games = 0
        suspension.is_active = False
    suspension_repo.add_serving(suspension, match.id)
    logger.debug(
        "Suspension %s served in match %s, %d left",
        suspension.id, match.id, suspension.remaining_games,
    )
    return True


def _serve(session, match: MatchORM) -> list[SuspensionORM]:
    roster_item_ids = RosterRepository(session).get_ids_by_team(match.side_ids)
    suspension_repo = SuspensionRepository(session)
    return [
        suspension
        for suspension in suspension_repo.get_active_for_roster_items(roster_item_ids)
        if _apply_serving(suspension_repo, suspension, match)
    ]


def _serve_finished(session, suspension: SuspensionORM, tournament_team_id: int) -> None:
    """Serve a new suspension with the team's matches already FINISHED after its trigger."""
    suspension_repo = SuspensionRepository(session)
    for match in MatchRepository(session).get_finished_by_tournament(suspension.tournament_id):
        if tournament_team_id in match.side_ids:
            _apply_serving(suspension_repo, suspension, match)


def serve_suspensions(
    session, match_id: int, notifier: Optional[Notifier] = None
) -> list[SuspensionORM]:
    """Count a FINISHED match against the suspensions of both teams' players.

    Only suspensions that started before the match date are served. Safe to
    call more than once for the same match.

    Returns:
        Suspensions that were decremented by this call

    Raises:
        NotFoundError: If the match does not exist
        ValidationError: If the match is not FINISHED
    """
    match = MatchRepository(session).get_required(match_id)
    if not match.is_finished:
        raise ValidationError(f"Match {match_id} is not finished (status: {match.status})")

    tournament = TournamentRepository(session).get_required(match.tournament_id)
    if not tournament.policy.enabled:
        return []

    with atomic(session):
        served = _serve(session, match)
        if served:
            publish_after_commit(session, notifier, TOPIC_DISCIPLINE_UPDATED, {
                "match_id": match.id,
                "suspensions": [s.to_payload() for s in served],
            })

    if served:
        logger.info("Match %s served %d suspension(s)", match.id, len(served))
    return served


def recompute_all(session, tournament_id: int, notifier: Optional[Notifier] = None) -> int:
    """Rebuild every suspension of a tournament from its card history.

    Deletes all suspensions, replays card events in chronological order with
    fresh counts, then serves FINISHED matches again in date order. Runs as
    one transaction so suspensions are never observably missing.

    Returns:
        Number of suspensions created

    Raises:
        NotFoundError: If the tournament does not exist
    """
    tournament = TournamentRepository(session).get_required(tournament_id)
    policy = tournament.policy
    if not policy.enabled:
        return 0

    with tournament_lock(tournament_id), atomic(session):
        suspension_repo = SuspensionRepository(session)
        removed = suspension_repo.delete_by_tournament(tournament_id)

        counts = defaultdict(int)
        created = 0
        for event, match in EventRepository(session).get_cards_chronological(tournament_id):
            card_type = EventType(event.type)
            scope_key, _, _ = scope_for_match(policy, match)
            key = (event.roster_item_id, card_type, scope_key)
            counts[key] += 1
            if counts[key] == policy.threshold_for(card_type):
                _create_suspension(
                    session, tournament_id, event.roster_item_id, card_type, policy, match, scope_key
                )
                created += 1

        for match in MatchRepository(session).get_finished_by_tournament(tournament_id):
            _serve(session, match)

        publish_after_commit(session, notifier, TOPIC_DISCIPLINE_UPDATED, {
            "tournament_id": tournament_id,
            "suspensions": [s.to_payload() for s in suspension_repo.get_by_tournament(tournament_id)],
        })

    logger.info(
        "Recomputed discipline for tournament %s: removed %d, created %d suspension(s)",
        tournament_id, removed, created,
    )
    return created


def suspended_roster_item_ids(
    session, roster_item_ids: Iterable[int], match_date: datetime
) -> set[int]:
    """Get the roster items barred from a match played on ``match_date``."""
    active = SuspensionRepository(session).get_active_for_roster_items(roster_item_ids)
    return {s.roster_item_id for s in active if s.applies_to(match_date)}
