"""Tournament enrollment, competition rosters and lineup publication."""

import logging
from typing import Iterable, Optional

from cupcore.models import RoleFilter, RosterEntry, RosterRole
from cupcore.notify import TOPIC_MATCH_LINEUP, Notifier, publish_after_commit
from cupcore.discipline import suspended_roster_item_ids
from cupcore.storage import (
    MatchRepository,
    ParticipantRepository,
    RosterItemORM,
    RosterRepository,
    TeamRepository,
    TournamentRepository,
    TournamentTeamORM,
    TournamentTeamRepository,
    atomic,
    tournament_lock,
)
from cupcore.validation import (
    NotFoundError,
    ValidationError,
    require,
    validate_membership,
    validate_starters,
    validate_unique_players,
)

logger = logging.getLogger(__name__)


# ============================================================================
# Enrollment
# ============================================================================


def enroll_team(session, tournament_id: int, team_id: int, seed: Optional[int] = None) -> TournamentTeamORM:
    """Enroll a club in a tournament, or update the seed of an existing enrollment.

    Raises:
        NotFoundError: If the tournament or club does not exist
        ValidationError: If the seed is not a positive integer
    """
    TournamentRepository(session).get_required(tournament_id)
    TeamRepository(session).get_required(team_id)
    if seed is not None and seed < 1:
        raise ValidationError(f"seed must be a positive integer, got {seed}")

    with atomic(session):
        tt = TournamentTeamRepository(session).upsert(tournament_id, team_id, seed)
    logger.debug("Enrolled team %s in tournament %s (seed %s)", team_id, tournament_id, seed)
    return tt


def withdraw_team(session, tournament_id: int, team_id: int) -> None:
    """Remove a club's enrollment together with its roster.

    Raises:
        NotFoundError: If the club is not enrolled
        ValidationError: If ties or matches already reference the enrollment
    """
    tt_repo = TournamentTeamRepository(session)
    tt = tt_repo.get(tournament_id, team_id)
    if tt is None:
        raise NotFoundError("TournamentTeam", f"(tournament={tournament_id}, team={team_id})")
    if tt_repo.has_fixtures(tt.id):
        raise ValidationError(f"Team {team_id} already has ties or matches in tournament {tournament_id}")

    with atomic(session):
        RosterRepository(session).delete_by_team(tt.id)
        tt_repo.delete(tt)
    logger.debug("Withdrew team %s from tournament %s", team_id, tournament_id)


def enrolled_teams(session, tournament_id: int) -> list[TournamentTeamORM]:
    """Get a tournament's enrollments ordered by seed (unseeded last), then ID."""
    TournamentRepository(session).get_required(tournament_id)
    return TournamentTeamRepository(session).get_by_tournament(tournament_id)


# ============================================================================
# Roster management
# ============================================================================


def list_roster(session, tournament_team_id: int, starters_only: bool = False) -> list[RosterItemORM]:
    """Get a team's roster ordered by role, shirt number, then ID."""
    TournamentTeamRepository(session).get_required(tournament_team_id)
    role = RosterRole.STARTER if starters_only else None
    return RosterRepository(session).get_by_team(tournament_team_id, role=role)


def _check_player_in_club(session, tt: TournamentTeamORM, player_id: int) -> None:
    player = TeamRepository(session).get_player(player_id)
    if player is None:
        raise NotFoundError("Player", player_id)
    if player.team_id != tt.team_id:
        raise ValidationError(f"Player {player_id} does not belong to team {tt.team_id}")


def _role_of(role) -> RosterRole:
    try:
        return RosterRole(role or RosterRole.STARTER)
    except ValueError:
        raise ValidationError(f"Unknown roster role: {role!r}")


def replace_roster(
    session,
    tournament_team_id: int,
    items: Iterable[RosterEntry],
    captain_player_id: Optional[int] = None,
) -> list[RosterItemORM]:
    """Replace a team's whole roster.

    Every player must belong to the enrolled club and appear once, and the
    number of starters must fit the tournament's team format. The captain is
    set to ``captain_player_id``'s new roster item, or cleared when it is
    None.

    Args:
        session: Database session
        tournament_team_id: Enrollment whose roster is replaced
        items: New roster entries
        captain_player_id: Player to make captain (must be in ``items``)

    Returns:
        The new roster

    Raises:
        NotFoundError: If the enrollment or a player does not exist
        ValidationError: If any entry is invalid
    """
    tt = TournamentTeamRepository(session).get_required(tournament_team_id)
    items = list(items)

    require(validate_unique_players(item.player_id for item in items))
    for item in items:
        _check_player_in_club(session, tt, item.player_id)
    roles = [_role_of(item.role) for item in items]
    starters = sum(1 for role in roles if role == RosterRole.STARTER)
    require(validate_starters(starters, tt.tournament.format.max_starters))

    if captain_player_id is not None:
        _check_player_in_club(session, tt, captain_player_id)
        if captain_player_id not in {item.player_id for item in items}:
            raise ValidationError(f"Captain {captain_player_id} is not on the new roster")

    roster_repo = RosterRepository(session)
    with atomic(session):
        roster_repo.delete_by_team(tt.id)
        tt.captain_roster_item_id = None
        for item, role in zip(items, roles):
            created = roster_repo.create(
                tt.id,
                item.player_id,
                number=item.number,
                position=item.position,
                role=role,
                notes=item.notes,
            )
            if item.player_id == captain_player_id:
                tt.captain_roster_item_id = created.id
        session.flush()
        roster = roster_repo.get_by_team(tt.id)

    logger.info("Roster of tournament team %s replaced: %d players", tt.id, len(roster))
    return roster


def add_roster_item(
    session,
    tournament_team_id: int,
    player_id: int,
    number: Optional[int] = None,
    position: Optional[str] = None,
    role: Optional[RosterRole] = None,
    notes: Optional[str] = None,
) -> RosterItemORM:
    """Add a player to a team's roster, or update their existing entry."""
    tt = TournamentTeamRepository(session).get_required(tournament_team_id)
    _check_player_in_club(session, tt, player_id)
    role = _role_of(role)

    roster_repo = RosterRepository(session)
    existing = roster_repo.get_by_player(tt.id, player_id)
    if role == RosterRole.STARTER:
        starters = [
            r for r in roster_repo.get_by_team(tt.id, role=RosterRole.STARTER)
            if existing is None or r.id != existing.id
        ]
        require(validate_starters(len(starters) + 1, tt.tournament.format.max_starters))

    with atomic(session):
        if existing is None:
            item = roster_repo.create(tt.id, player_id, number, position, role, notes)
        else:
            existing.number = number
            existing.position = position
            existing.role = role.value
            existing.notes = notes
            session.flush()
            item = existing
    return item


def remove_roster_item(session, tournament_team_id: int, player_id: int) -> None:
    """Remove a player from a team's roster, clearing the captaincy if needed."""
    tt = TournamentTeamRepository(session).get_required(tournament_team_id)
    roster_repo = RosterRepository(session)
    item = roster_repo.get_by_player(tt.id, player_id)
    if item is None:
        raise NotFoundError("RosterItem", f"(tournament_team={tournament_team_id}, player={player_id})")

    with atomic(session):
        if tt.captain_roster_item_id == item.id:
            tt.captain_roster_item_id = None
        roster_repo.delete(item)


def assert_roster_item_belongs(session, roster_item_id: int, tournament_team_id: int) -> RosterItemORM:
    """Get a roster item, checking it is on the given team's roster.

    Raises:
        NotFoundError: If the roster item does not exist
        ValidationError: If it belongs to another team
    """
    item = RosterRepository(session).get_required(roster_item_id)
    if item.tournament_team_id != tournament_team_id:
        raise ValidationError(
            f"Roster item {roster_item_id} does not belong to tournament team {tournament_team_id}"
        )
    return item


def set_captain(
    session,
    tournament_team_id: int,
    roster_item_id: Optional[int] = None,
    player_id: Optional[int] = None,
) -> TournamentTeamORM:
    """Set a team's captain by roster item or by player; clear it when both are None."""
    tt = TournamentTeamRepository(session).get_required(tournament_team_id)

    captain_id = None
    if roster_item_id is not None:
        captain_id = assert_roster_item_belongs(session, roster_item_id, tt.id).id
    elif player_id is not None:
        item = RosterRepository(session).get_by_player(tt.id, player_id)
        if item is None:
            raise ValidationError(f"Player {player_id} is not on the roster of tournament team {tt.id}")
        captain_id = item.id

    with atomic(session):
        tt.captain_roster_item_id = captain_id
        session.flush()
    return tt


# ============================================================================
# Lineup publication
# ============================================================================


def publish_roster(
    session,
    match_id: int,
    tournament_team_id: int,
    role_filter: RoleFilter = RoleFilter.ALL,
    reset: bool = True,
    notifier: Optional[Notifier] = None,
) -> list[int]:
    """Copy a team's roster into a match's participant list.

    Players serving a suspension on the match date are left out without
    error. With ``reset`` the team's previous lineup for the match is
    replaced; without it, players already listed are kept and not
    duplicated.

    Args:
        session: Database session
        match_id: Match to publish to
        tournament_team_id: Team whose roster is published
        role_filter: ALL, or STARTER for starters only
        reset: Replace the team's existing lineup rows
        notifier: Receives ``tmatch:lineup``

    Returns:
        IDs of the published roster items, in lineup order

    Raises:
        NotFoundError: If the match or team does not exist
        ValidationError: If the team does not play in the match
    """
    match = MatchRepository(session).get_required(match_id)
    tt = TournamentTeamRepository(session).get_required(tournament_team_id)
    if match.tournament_id != tt.tournament_id:
        raise ValidationError(f"Match {match_id} is not part of tournament {tt.tournament_id}")
    require(validate_membership(tt.id, match.side_ids))
    role_filter = RoleFilter(role_filter)

    role = RosterRole.STARTER if role_filter == RoleFilter.STARTER else None
    roster = RosterRepository(session).get_by_team(tt.id, role=role)
    suspended = suspended_roster_item_ids(session, [r.id for r in roster], match.date)
    eligible = [r for r in roster if r.id not in suspended]
    if suspended:
        logger.debug("Match %s: leaving out suspended roster items %s", match.id, sorted(suspended))

    participant_repo = ParticipantRepository(session)
    with tournament_lock(tt.tournament_id), atomic(session):
        if reset:
            participant_repo.delete_for_team(match.id, tt.id)
            already = set()
        else:
            existing = participant_repo.get_by_match_and_team(match.id, tt.id)
            barred = suspended_roster_item_ids(session, [p.roster_item_id for p in existing], match.date)
            for row in existing:
                if row.roster_item_id in barred:
                    session.delete(row)
            session.flush()
            suspended |= barred
            already = {p.roster_item_id for p in existing if p.roster_item_id not in barred}

        for item in eligible:
            if item.id in already:
                continue
            participant_repo.create(
                match.id,
                item.id,
                role=item.role_enum,
                position=item.position,
                is_captain=item.id == tt.captain_roster_item_id,
                order_index=item.number if item.number is not None else 0,
            )

        published = [item.id for item in eligible]
        publish_after_commit(session, notifier, TOPIC_MATCH_LINEUP, {
            "match_id": match.id,
            "tournament_team_id": tt.id,
            "roster_item_ids": published,
            "suspended_roster_item_ids": sorted(suspended),
        })

    logger.info(
        "Published lineup for match %s, team %s: %d players (%d suspended)",
        match.id, tt.id, len(published), len(suspended),
    )
    return published
