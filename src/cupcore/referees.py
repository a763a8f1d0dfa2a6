"""Referee assignment for matches."""

import logging
from typing import Optional

from cupcore.models import RefereeAssignment
from cupcore.storage import MatchRefereeORM, MatchRepository, RefereeORM, RefereeRepository, atomic
from cupcore.validation import NotFoundError, ValidationError

logger = logging.getLogger(__name__)


def register_referee(session, name: str) -> RefereeORM:
    """Get a referee by name, creating it if needed."""
    name = (name or "").strip()
    if not name:
        raise ValidationError("Referee name is required")

    repo = RefereeRepository(session)
    referee = repo.get_by_name(name)
    if referee is None:
        with atomic(session):
            referee = repo.create(name)
    return referee


def list_match_referees(session, match_id: int) -> list[MatchRefereeORM]:
    """Get a match's referees in assignment order."""
    MatchRepository(session).get_required(match_id)
    return RefereeRepository(session).get_by_match(match_id)


def set_match_referees(session, match_id: int, assignments: list[RefereeAssignment]) -> list[MatchRefereeORM]:
    """Replace a match's referee list.

    Args:
        session: Database session
        match_id: Match to staff
        assignments: Referees with their roles; an empty list clears the match

    Returns:
        The match's assignments after the replacement

    Raises:
        NotFoundError: If the match or a referee does not exist
        ValidationError: If a referee is listed twice
    """
    MatchRepository(session).get_required(match_id)
    repo = RefereeRepository(session)

    seen = set()
    for assignment in assignments:
        if assignment.referee_id in seen:
            raise ValidationError(f"Referee {assignment.referee_id} is listed twice")
        seen.add(assignment.referee_id)
        repo.get_required(assignment.referee_id)

    with atomic(session):
        repo.delete_for_match(match_id)
        for assignment in assignments:
            repo.assign(match_id, assignment.referee_id, role=assignment.role)

    logger.info("Match %s: %d referee(s) assigned", match_id, len(assignments))
    return repo.get_by_match(match_id)


def assign_referee(session, match_id: int, referee_id: int, role: Optional[str] = None) -> MatchRefereeORM:
    """Assign one referee to a match, or change the role of an assigned one."""
    MatchRepository(session).get_required(match_id)
    repo = RefereeRepository(session)
    repo.get_required(referee_id)

    with atomic(session):
        assignment = repo.get_assignment(match_id, referee_id)
        if assignment is None:
            assignment = repo.assign(match_id, referee_id, role=role)
        else:
            assignment.role = role
            session.flush()
    return assignment


def unassign_referee(session, match_id: int, referee_id: int) -> None:
    """Remove a referee from a match.

    Raises:
        NotFoundError: If the referee is not assigned to the match
    """
    repo = RefereeRepository(session)
    assignment = repo.get_assignment(match_id, referee_id)
    if assignment is None:
        raise NotFoundError("Referee assignment", f"{referee_id} for match {match_id}")

    with atomic(session):
        session.delete(assignment)
        session.flush()
