"""Knockout bracket generator."""

import logging
import random
from datetime import datetime, timedelta
from typing import Iterable, Optional

from cupcore.discipline import recompute_all
from cupcore.models import STAGE_ORDER, BracketMode, Stage
from cupcore.notify import TOPIC_TIE_UPDATED, Notifier, publish_after_commit
from cupcore.storage import (
    MatchRepository,
    RoundRepository,
    TieORM,
    TieRepository,
    TournamentRepository,
    TournamentTeamORM,
    TournamentTeamRepository,
    atomic,
    tournament_lock,
)
from cupcore.validation import (
    ValidationError,
    require,
    validate_bracket_size,
    validate_explicit_pairs,
    validate_legs,
)

logger = logging.getLogger(__name__)

THIRD_PLACE_ROUND_NAME = "3rd place"

# Unseeded teams sort after every seeded team
_NO_SEED = 999999

_STAGE_FOR_COUNT = {
    32: Stage.ROUND_OF_32,
    16: Stage.ROUND_OF_16,
    8: Stage.QUARTERFINAL,
    4: Stage.SEMIFINAL,
    2: Stage.FINAL,
}


def stage_for_team_count(team_count: int) -> Stage:
    """Get the first elimination stage for a bracket of ``team_count`` teams.

    Examples:
        >>> stage_for_team_count(8)
        <Stage.QUARTERFINAL: 'QUARTERFINAL'>
        >>> stage_for_team_count(2)
        <Stage.FINAL: 'FINAL'>
    """
    require(validate_bracket_size(team_count))
    return _STAGE_FOR_COUNT[team_count]


def stage_plan(start_stage: Stage) -> list[Stage]:
    """Get the stages from ``start_stage`` through the final, in order."""
    return STAGE_ORDER[STAGE_ORDER.index(Stage(start_stage)):]


def round_name(stage: Stage) -> str:
    """Display name of an elimination round ("ROUND OF 16")."""
    return Stage(stage).value.replace("_", " ")


def seed_order(teams: Iterable[TournamentTeamORM]) -> list[TournamentTeamORM]:
    """Sort enrolled teams by seed ascending (unseeded last), then by name."""
    return sorted(
        teams,
        key=lambda tt: (tt.seed if tt.seed is not None else _NO_SEED, tt.name),
    )


def fold_pairs(ordered: list) -> list[tuple]:
    """Pair rank i with rank N+1-i.

    Examples:
        >>> fold_pairs([1, 2, 3, 4, 5, 6, 7, 8])
        [(1, 8), (2, 7), (3, 6), (4, 5)]
    """
    n = len(ordered)
    return [(ordered[i], ordered[n - 1 - i]) for i in range(n // 2)]


def build_first_round_pairs(
    teams: list[TournamentTeamORM],
    mode: BracketMode,
    pairs: Optional[list[tuple[int, int]]] = None,
    random_seed: Optional[int] = None,
) -> list[tuple[int, int]]:
    """Build the first-round pairs as tournament team IDs.

    Args:
        teams: Enrolled tournament teams
        mode: SEEDED, RANDOM or EXPLICIT
        pairs: Club ID pairs (EXPLICIT mode only)
        random_seed: Seed for a reproducible RANDOM draw

    Returns:
        List of (team1_tt_id, team2_tt_id)

    Raises:
        ValidationError: If EXPLICIT pairs are invalid
    """
    mode = BracketMode(mode)

    if mode == BracketMode.EXPLICIT:
        if pairs is None:
            raise ValidationError("EXPLICIT mode requires pairs")
        pairs = [tuple(p) for p in pairs]
        require(validate_explicit_pairs(pairs, [tt.team_id for tt in teams]))
        tt_by_team = {tt.team_id: tt.id for tt in teams}
        return [(tt_by_team[a], tt_by_team[b]) for a, b in pairs]

    if mode == BracketMode.RANDOM:
        ordered = sorted(teams, key=lambda tt: tt.id)
        random.Random(random_seed).shuffle(ordered)
    else:
        ordered = seed_order(teams)

    return [(a.id, b.id) for a, b in fold_pairs(ordered)]


def _delete_stages(session, tournament_id: int, stages: list[Stage]) -> bool:
    """Delete matches, ties and rounds of the given stages.

    Returns:
        True if a deleted match had card events or served a suspension
    """
    round_repo = RoundRepository(session)
    tie_repo = TieRepository(session)
    match_repo = MatchRepository(session)

    rounds = round_repo.get_by_stages(tournament_id, stages)
    round_ids = [r.id for r in rounds]
    tie_ids = {tie.id for rid in round_ids for tie in tie_repo.get_by_round(rid)}

    matches = {m.id: m for m in match_repo.get_by_rounds(round_ids)}
    for tie_id in tie_ids:
        for match in match_repo.get_by_tie(tie_id):
            matches[match.id] = match

    touched = any(match_repo.touches_discipline(m) for m in matches.values())
    for match in matches.values():
        match_repo.delete(match)
    for rid in round_ids:
        for tie in tie_repo.get_by_round(rid):
            session.delete(tie)
    session.flush()
    for round_orm in rounds:
        session.delete(round_orm)
    session.flush()

    logger.debug(
        "Reset tournament %s: removed %d rounds, %d ties, %d matches",
        tournament_id, len(rounds), len(tie_ids), len(matches),
    )
    return touched


def generate_bracket(
    session,
    tournament_id: int,
    mode: BracketMode = BracketMode.SEEDED,
    legs: int = 1,
    include_third_place: bool = False,
    materialize_matches: bool = False,
    pairs: Optional[list[tuple[int, int]]] = None,
    reset: bool = False,
    start_date: Optional[datetime] = None,
    leg_gap_days: int = 0,
    random_seed: Optional[int] = None,
    notifier: Optional[Notifier] = None,
) -> list[TieORM]:
    """Generate a knockout bracket for a tournament.

    All input is validated before anything is written; the writes run as a
    single transaction while holding the tournament's lock.

    Args:
        session: Database session
        tournament_id: Tournament to generate for
        mode: How first-round pairs are formed
        legs: Legs per first-round tie
        include_third_place: Ensure a third-place round and tie exist
        materialize_matches: Create one match per leg for first-round ties
        pairs: Club ID pairs for EXPLICIT mode
        reset: Delete existing matches, ties and rounds of the planned
            stages first
        start_date: Date of leg 1 (defaults to the tournament start date,
            then to now)
        leg_gap_days: Days between consecutive legs
        random_seed: Seed for a reproducible RANDOM draw
        notifier: Receives ``tie:updated`` for each first-round tie

    Returns:
        All ties of the tournament ordered by round ID, then ID

    Raises:
        NotFoundError: If the tournament does not exist
        ValidationError: If the team count, legs or pairs are invalid
    """
    tournament = TournamentRepository(session).get_required(tournament_id)
    try:
        mode = BracketMode(mode)
    except ValueError:
        raise ValidationError(f"Unknown bracket mode: {mode!r}")
    require(validate_legs(legs))
    if leg_gap_days < 0:
        raise ValidationError(f"leg_gap_days cannot be negative, got {leg_gap_days}")

    teams = TournamentTeamRepository(session).get_by_tournament(tournament_id)
    start_stage = stage_for_team_count(len(teams))
    plan = stage_plan(start_stage)
    pair_list = build_first_round_pairs(teams, mode, pairs=pairs, random_seed=random_seed)

    first_date = start_date or tournament.start_date or datetime.utcnow()

    with tournament_lock(tournament_id), atomic(session):
        if reset and _delete_stages(session, tournament_id, plan):
            # Suspensions and servings from the deleted matches no longer hold
            recompute_all(session, tournament_id, notifier=notifier)

        round_repo = RoundRepository(session)
        tie_repo = TieRepository(session)
        match_repo = MatchRepository(session)

        rounds = {}
        for index, stage in enumerate(plan):
            rounds[stage] = round_repo.get_or_create(
                tournament_id, stage, number=index + 1, name=round_name(stage)
            )

        start_round = rounds[start_stage]
        first_round_ties = []
        for tt1, tt2 in pair_list:
            tie = tie_repo.create(tournament_id, start_round.id, tt1, tt2, legs=legs)
            first_round_ties.append(tie)

            if materialize_matches:
                for leg in range(1, legs + 1):
                    # Even legs reverse home and away
                    home, away = (tt2, tt1) if leg % 2 == 0 else (tt1, tt2)
                    match_repo.create(
                        tournament_id,
                        home,
                        away,
                        date=first_date + timedelta(days=(leg - 1) * leg_gap_days),
                        round_id=start_round.id,
                        tie_id=tie.id,
                        leg_number=leg,
                    )

        size = len(pair_list)
        for stage in plan[1:]:
            size = max(1, size // 2)
            for _ in range(size):
                tie_repo.create(tournament_id, rounds[stage].id, legs=1)

        if include_third_place and start_stage != Stage.FINAL:
            third = round_repo.get_or_create(
                tournament_id, Stage.THIRD_PLACE, number=None, name=THIRD_PLACE_ROUND_NAME
            )
            if not tie_repo.get_by_round(third.id):
                tie_repo.create(tournament_id, third.id, legs=1)

        for tie in first_round_ties:
            publish_after_commit(session, notifier, TOPIC_TIE_UPDATED, {
                "tie_id": tie.id,
                "aggregate": {"side1": 0, "side2": 0},
                "winner_tt_id": None,
            })

        all_ties = tie_repo.get_by_tournament(tournament_id)

    logger.info(
        "Generated %s bracket for tournament %s: %d teams from %s, %d ties total",
        mode.value, tournament_id, len(teams), start_stage.value, len(all_ties),
    )
    return all_ties
