"""Shared fixtures: in-memory database and builders for competition data."""

from datetime import datetime

import pytest

from cupcore.models import DisciplinePolicy, MatchStatus, RosterRole, Stage, TeamFormat
from cupcore.notify import Notifier
from cupcore.storage import (
    DatabaseManager,
    GroupRepository,
    MatchRepository,
    RosterRepository,
    RoundRepository,
    TeamRepository,
    TieRepository,
    TournamentRepository,
    TournamentTeamRepository,
    atomic,
)

START = datetime(2025, 4, 5, 15, 0)


class RecordingNotifier(Notifier):
    """Notifier that keeps every published message."""

    def __init__(self):
        self.messages = []

    def publish(self, topic, payload):
        self.messages.append((topic, payload))

    def topics(self):
        return [topic for topic, _ in self.messages]


class CupFactory:
    """Builds committed competition data for tests."""

    def __init__(self, session):
        self.session = session

    def tournament(self, title="Spring Cup", team_format=TeamFormat.ELEVEN, policy=None, start_date=START):
        with atomic(self.session):
            return TournamentRepository(self.session).create(
                title, start_date=start_date, team_format=team_format, policy=policy
            )

    def club(self, name, players=0):
        with atomic(self.session):
            repo = TeamRepository(self.session)
            team = repo.create(name)
            for i in range(1, players + 1):
                repo.add_player(team.id, f"{name}", f"Player{i}")
        return team

    def player(self, club, first_name="Extra", last_name="Player"):
        with atomic(self.session):
            return TeamRepository(self.session).add_player(club.id, first_name, last_name)

    def enroll(self, tournament, name, seed=None, players=0):
        club = self.club(name, players=players)
        with atomic(self.session):
            return TournamentTeamRepository(self.session).upsert(tournament.id, club.id, seed)

    def enroll_many(self, tournament, count, seeded=True):
        return [
            self.enroll(tournament, f"Team {i:02d}", seed=i if seeded else None)
            for i in range(1, count + 1)
        ]

    def roster(self, tt, count, role=RosterRole.STARTER, first_number=1):
        """Add ``count`` new club players to ``tt``'s roster with consecutive numbers."""
        items = []
        with atomic(self.session):
            team_repo = TeamRepository(self.session)
            roster_repo = RosterRepository(self.session)
            offset = len(roster_repo.get_by_team(tt.id))
            for i in range(count):
                player = team_repo.add_player(tt.team_id, "Roster", f"Player{offset + i + 1}")
                items.append(roster_repo.create(tt.id, player.id, number=first_number + i, role=role))
        return items

    def round(self, tournament, stage=Stage.GROUP, number=None, name=None):
        with atomic(self.session):
            return RoundRepository(self.session).create(tournament.id, stage, number=number, name=name)

    def group(self, tournament, teams, name="A", round_orm=None):
        with atomic(self.session):
            return GroupRepository(self.session).create(
                tournament.id, name, [tt.id for tt in teams],
                round_id=round_orm.id if round_orm else None,
            )

    def tie(self, tournament, tt1, tt2, round_orm=None, legs=2):
        round_orm = round_orm or self.round(tournament, Stage.FINAL)
        with atomic(self.session):
            return TieRepository(self.session).create(tournament.id, round_orm.id, tt1.id, tt2.id, legs=legs)

    def match(self, tournament, tt1, tt2, date=START, tie=None, round_orm=None, group=None,
              leg=None, status=MatchStatus.SCHEDULED, score=None):
        with atomic(self.session):
            match = MatchRepository(self.session).create(
                tournament.id,
                tt1.id,
                tt2.id,
                date=date,
                round_id=round_orm.id if round_orm else (tie.round_id if tie else None),
                tie_id=tie.id if tie else None,
                group_id=group.id if group else None,
                leg_number=leg,
            )
            match.status = MatchStatus(status).value
            if score is not None:
                match.team1_score, match.team2_score = score
        return match


@pytest.fixture
def db():
    manager = DatabaseManager(":memory:")
    manager.create_tables()
    yield manager
    manager.engine.dispose()


@pytest.fixture
def session(db):
    session = db.get_session()
    yield session
    session.close()


@pytest.fixture
def factory(session):
    return CupFactory(session)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def strict_policy():
    """Two yellows or one red suspend for one game, counted tournament-wide."""
    return DisciplinePolicy(yellow_to_suspend=2, red_to_suspend=1, suspension_games=1)
