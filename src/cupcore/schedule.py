"""Round-robin schedule generation using the circle method."""

import logging
from datetime import datetime, timedelta
from typing import Optional, Sequence

from cupcore.models import Fixture
from cupcore.notify import TOPIC_MATCH_UPDATED, Notifier, publish_after_commit
from cupcore.storage import (
    GroupRepository,
    MatchRepository,
    RoundRepository,
    TournamentRepository,
    atomic,
)
from cupcore.validation import (
    ValidationError,
    require,
    validate_group_size,
    validate_round_robin_cycles,
)

logger = logging.getLogger(__name__)


def circle_method_matchdays(slots: Sequence) -> list[list[tuple]]:
    """Pair slots into matchdays with the circle method.

    An odd number of slots gets a bye added; pairings against the bye are
    dropped. The first slot stays fixed while the rest rotate one position
    per matchday.

    Args:
        slots: Team identifiers in scheduling order

    Returns:
        One list of (home, away) pairs per matchday (K-1 matchdays for K
        slots including the bye)

    Examples:
        >>> circle_method_matchdays([1, 2, 3, 4])
        [[(1, 2), (3, 4)], [(1, 4), (2, 3)], [(1, 3), (4, 2)]]
    """
    arr = list(slots)
    if len(arr) % 2:
        arr.append(None)  # Bye

    k = len(arr)
    if k < 2:
        return []

    fixed, rotating = arr[0], arr[1:]
    matchdays = []
    for _ in range(k - 1):
        pairs = [(fixed, rotating[0])]
        for i in range(1, (k - 2) // 2 + 1):
            pairs.append((rotating[i], rotating[-i]))
        matchdays.append([(a, b) for a, b in pairs if a is not None and b is not None])
        rotating = rotating[-1:] + rotating[:-1]
    return matchdays


def build_fixtures(
    team_ids: Sequence[int],
    rounds: int = 1,
    start_date: Optional[datetime] = None,
    match_gap_days: int = 7,
) -> list[Fixture]:
    """Build dated fixtures for a single or double round robin.

    Matchday m is dated ``start_date + m * match_gap_days``. In a double
    round robin each fixture gets a mirror with sides swapped, dated
    ``match_gap_days`` after the fixture.
    """
    start_date = start_date or datetime.utcnow()
    fixtures = []
    for matchday, pairs in enumerate(circle_method_matchdays(team_ids)):
        date = start_date + timedelta(days=matchday * match_gap_days)
        for home, away in pairs:
            fixtures.append(Fixture(matchday=matchday, team1_id=home, team2_id=away, date=date))
            if rounds == 2:
                fixtures.append(Fixture(
                    matchday=matchday,
                    team1_id=away,
                    team2_id=home,
                    date=date + timedelta(days=match_gap_days),
                    is_mirror=True,
                ))
    return fixtures


def generate_group_schedule(
    session,
    group_id: int,
    round_id: int,
    rounds: int = 1,
    start_date: Optional[datetime] = None,
    match_gap_days: int = 7,
    notifier: Optional[Notifier] = None,
) -> int:
    """Create the matches of a group's round robin.

    Existing matches of the group are left alone; calling twice appends a
    second copy of the schedule.

    Args:
        session: Database session
        group_id: Group to schedule
        round_id: Round the matches belong to
        rounds: 1 for single, 2 for double round robin
        start_date: Date of the first matchday (defaults to the round date,
            then the tournament start date, then now)
        match_gap_days: Days between matchdays
        notifier: Receives ``tmatch:updated`` for each created match

    Returns:
        Number of matches created

    Raises:
        NotFoundError: If the group or round does not exist
        ValidationError: If the group is too small or arguments are invalid
    """
    group = GroupRepository(session).get_required(group_id)
    round_orm = RoundRepository(session).get_required(round_id)
    if round_orm.tournament_id != group.tournament_id:
        raise ValidationError(
            f"Round {round_id} does not belong to tournament {group.tournament_id}"
        )

    team_ids = group.team_ids
    require(validate_group_size(len(team_ids)))
    require(validate_round_robin_cycles(rounds))
    if match_gap_days < 0:
        raise ValidationError(f"match_gap_days cannot be negative, got {match_gap_days}")

    if start_date is None:
        tournament = TournamentRepository(session).get_required(group.tournament_id)
        start_date = round_orm.date or tournament.start_date or datetime.utcnow()

    fixtures = build_fixtures(team_ids, rounds, start_date, match_gap_days)

    with atomic(session):
        match_repo = MatchRepository(session)
        for fixture in fixtures:
            match = match_repo.create(
                group.tournament_id,
                fixture.team1_id,
                fixture.team2_id,
                date=fixture.date,
                round_id=round_orm.id,
                group_id=group.id,
            )
            publish_after_commit(session, notifier, TOPIC_MATCH_UPDATED, match.to_payload())

    logger.info(
        "Scheduled group %s (%s): %d teams, %d matches",
        group.name, group.id, len(team_ids), len(fixtures),
    )
    return len(fixtures)
