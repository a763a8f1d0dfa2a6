"""CSV import of team registrations."""

import csv
import logging
from pathlib import Path
from typing import Optional

from cupcore.models import TeamRegistration
from cupcore.roster import enroll_team
from cupcore.storage import TeamRepository, TournamentRepository, TournamentTeamORM, atomic

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = {"name"}


class CSVImportError(Exception):
    """Error during CSV import."""
    pass


def validate_team_row(row: dict, row_num: int) -> TeamRegistration:
    """Validate a team row from CSV.

    Args:
        row: Dictionary with CSV columns
        row_num: Row number for error messages

    Returns:
        TeamRegistration with cleaned data

    Raises:
        CSVImportError: If validation fails
    """
    name = (row.get("name") or "").strip()
    if not name:
        raise CSVImportError(f"Row {row_num}: Missing required field 'name'")

    seed: Optional[int] = None
    raw_seed = (row.get("seed") or "").strip()
    if raw_seed:
        try:
            seed = int(raw_seed)
        except ValueError:
            raise CSVImportError(f"Row {row_num}: 'seed' must be a number, got '{raw_seed}'")
        if seed < 1:
            raise CSVImportError(f"Row {row_num}: 'seed' must be positive, got {seed}")

    # Players as "First Last; First Last"
    raw_players = row.get("players") or ""
    players = [p.strip() for p in raw_players.split(";") if p.strip()]

    return TeamRegistration(name=name, seed=seed, players=players)


def import_teams_csv(csv_path: str) -> list[TeamRegistration]:
    """Read team registrations from a CSV file.

    CSV format:
        name,seed,players
        Dynamo,1,Ivan Petrov; Oleg Sidorov
        Torpedo,,

    ``seed`` and ``players`` are optional.

    Raises:
        CSVImportError: If the file is missing, a column is missing, a row
            is invalid or a team name repeats
    """
    csv_file = Path(csv_path)
    if not csv_file.exists():
        raise CSVImportError(f"CSV file not found: {csv_path}")

    registrations = []
    seen_names = set()

    with open(csv_file, "r", encoding="utf-8", newline="") as f:
        reader = csv.DictReader(f)

        # Validate header
        columns = {c.strip() for c in (reader.fieldnames or [])}
        if not REQUIRED_COLUMNS.issubset(columns):
            missing = REQUIRED_COLUMNS - columns
            raise CSVImportError(f"CSV missing required columns: {missing}")

        for row_num, row in enumerate(reader, start=2):  # Row 1 is the header
            row = {(k or "").strip(): v for k, v in row.items()}
            registration = validate_team_row(row, row_num)
            key = registration.name.casefold()
            if key in seen_names:
                raise CSVImportError(f"Row {row_num}: Duplicate team '{registration.name}'")
            seen_names.add(key)
            registrations.append(registration)

    logger.info("Read %d team registrations from %s", len(registrations), csv_path)
    return registrations


def _split_name(full_name: str) -> tuple[str, str]:
    first, _, last = full_name.partition(" ")
    return first, last.strip()


def register_teams(
    session, tournament_id: int, registrations: list[TeamRegistration]
) -> list[TournamentTeamORM]:
    """Create clubs and players as needed and enroll them in a tournament.

    Existing clubs are matched by name; players already registered with the
    club under the same name are not duplicated. Runs as one transaction.

    Returns:
        The enrollments, in file order
    """
    TournamentRepository(session).get_required(tournament_id)
    team_repo = TeamRepository(session)

    enrolled = []
    with atomic(session):
        for registration in registrations:
            team = team_repo.get_by_name(registration.name) or team_repo.create(registration.name)
            known = {p.full_name.casefold() for p in team.players}
            for full_name in registration.players:
                if full_name.casefold() in known:
                    continue
                first, last = _split_name(full_name)
                team_repo.add_player(team.id, first, last)
                known.add(full_name.casefold())
            enrolled.append(enroll_team(session, tournament_id, team.id, registration.seed))

    logger.info("Enrolled %d teams in tournament %s", len(enrolled), tournament_id)
    return enrolled
