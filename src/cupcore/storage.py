"""SQLite storage layer for cupcore.

Provides ORM models, transaction helpers and the repository pattern for data
persistence. Cross-entity references are plain id columns; relationships are
declared only where reads need resolved objects.

Repositories never commit. Engine operations wrap their writes in
``atomic()`` so a composite mutation either applies completely or not at all.
"""

import json
import logging
import threading
import weakref
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Callable, Iterable, Optional

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    create_engine,
    func,
)
from sqlalchemy.orm import declarative_base, relationship, sessionmaker
from sqlalchemy.pool import NullPool, StaticPool

from cupcore.models import (
    AccumulationScope,
    DisciplinePolicy,
    EventType,
    MatchStatus,
    RosterRole,
    Stage,
    SuspensionReason,
    TeamFormat,
)
from cupcore.validation import NotFoundError

logger = logging.getLogger(__name__)

Base = declarative_base()


# ============================================================================
# ORM Models
# ============================================================================


class TournamentORM(Base):
    """Tournament table.

    Holds competition identity, the team format and the discipline policy.
    """

    __tablename__ = "tournaments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    title = Column(String(200), nullable=False)
    season = Column(String(50), nullable=True)
    city = Column(String(100), nullable=True)
    start_date = Column(DateTime, nullable=True)
    team_format = Column(String(10), nullable=False, default=TeamFormat.ELEVEN.value)

    # Discipline policy
    discipline_enabled = Column(Boolean, nullable=False, default=True)
    discipline_scope = Column(String(20), nullable=False, default=AccumulationScope.TOURNAMENT.value)
    yellow_to_suspend = Column(Integer, nullable=False, default=2)
    red_to_suspend = Column(Integer, nullable=False, default=1)
    suspension_games = Column(Integer, nullable=False, default=1)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    @property
    def format(self) -> TeamFormat:
        return TeamFormat(self.team_format)

    @property
    def policy(self) -> DisciplinePolicy:
        """Discipline policy as a value object."""
        return DisciplinePolicy(
            enabled=bool(self.discipline_enabled),
            scope=AccumulationScope(self.discipline_scope),
            yellow_to_suspend=self.yellow_to_suspend,
            red_to_suspend=self.red_to_suspend,
            suspension_games=self.suspension_games,
        )

    @policy.setter
    def policy(self, value: DisciplinePolicy):
        self.discipline_enabled = value.enabled
        self.discipline_scope = AccumulationScope(value.scope).value
        self.yellow_to_suspend = value.yellow_to_suspend
        self.red_to_suspend = value.red_to_suspend
        self.suspension_games = value.suspension_games


class TeamORM(Base):
    """Club table. Players belong to a club."""

    __tablename__ = "teams"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(200), nullable=False, unique=True)
    city = Column(String(100), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    players = relationship("PlayerORM", back_populates="team")


class PlayerORM(Base):
    """Player table."""

    __tablename__ = "players"

    id = Column(Integer, primary_key=True, autoincrement=True)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False, default="")
    team_id = Column(Integer, ForeignKey("teams.id"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    team = relationship("TeamORM", back_populates="players")

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class TournamentTeamORM(Base):
    """A club's enrollment in a tournament.

    ``captain_roster_item_id`` references a RosterItemORM by id only; the
    roster belongs to this row, so a foreign key back would be circular.
    """

    __tablename__ = "tournament_teams"
    __table_args__ = (UniqueConstraint("tournament_id", "team_id"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    tournament_id = Column(Integer, ForeignKey("tournaments.id"), nullable=False)
    team_id = Column(Integer, ForeignKey("teams.id"), nullable=False)
    seed = Column(Integer, nullable=True)  # 1 = best
    captain_roster_item_id = Column(Integer, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    tournament = relationship("TournamentORM")
    team = relationship("TeamORM")

    @property
    def name(self) -> str:
        return self.team.name if self.team else f"TT{self.id}"


class RosterItemORM(Base):
    """Competition roster entry (TournamentTeamPlayer)."""

    __tablename__ = "roster_items"
    __table_args__ = (UniqueConstraint("tournament_team_id", "player_id"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    tournament_team_id = Column(Integer, ForeignKey("tournament_teams.id"), nullable=False)
    player_id = Column(Integer, ForeignKey("players.id"), nullable=False)
    number = Column(Integer, nullable=True)  # Shirt number
    position = Column(String(30), nullable=True)
    role = Column(String(20), nullable=False, default=RosterRole.STARTER.value)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    tournament_team = relationship("TournamentTeamORM")
    player = relationship("PlayerORM")

    @property
    def role_enum(self) -> RosterRole:
        return RosterRole(self.role)


class RoundORM(Base):
    """Round table: a knockout stage or a group matchday."""

    __tablename__ = "rounds"

    id = Column(Integer, primary_key=True, autoincrement=True)
    tournament_id = Column(Integer, ForeignKey("tournaments.id"), nullable=False)
    stage = Column(String(20), nullable=False)
    number = Column(Integer, nullable=True)
    name = Column(String(100), nullable=True)
    date = Column(DateTime, nullable=True)

    tournament = relationship("TournamentORM")

    @property
    def stage_enum(self) -> Stage:
        return Stage(self.stage)


class GroupORM(Base):
    """Round-robin group table."""

    __tablename__ = "groups"

    id = Column(Integer, primary_key=True, autoincrement=True)
    tournament_id = Column(Integer, ForeignKey("tournaments.id"), nullable=False)
    round_id = Column(Integer, ForeignKey("rounds.id"), nullable=True)
    name = Column(String(20), nullable=False)  # A, B, C, etc.
    # Store tournament team ids as JSON array (order matters for scheduling)
    team_ids_json = Column(Text, nullable=False, default="[]")
    created_at = Column(DateTime, default=datetime.utcnow)

    @property
    def team_ids(self) -> list[int]:
        """Get tournament team IDs from JSON."""
        return json.loads(self.team_ids_json)

    @team_ids.setter
    def team_ids(self, value: list[int]):
        """Set tournament team IDs as JSON."""
        self.team_ids_json = json.dumps(list(value))


class TieORM(Base):
    """Tie table: a best-of-N-legs pairing within a round.

    Placeholder ties for later stages have both sides empty.
    """

    __tablename__ = "ties"

    id = Column(Integer, primary_key=True, autoincrement=True)
    tournament_id = Column(Integer, ForeignKey("tournaments.id"), nullable=False)
    round_id = Column(Integer, ForeignKey("rounds.id"), nullable=False)
    team1_tt_id = Column(Integer, ForeignKey("tournament_teams.id"), nullable=True)
    team2_tt_id = Column(Integer, ForeignKey("tournament_teams.id"), nullable=True)
    legs = Column(Integer, nullable=False, default=1)
    winner_tt_id = Column(Integer, nullable=True)
    # Aggregate cache, rebuilt by recalc_tie
    aggregate1 = Column(Integer, nullable=False, default=0)
    aggregate2 = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=datetime.utcnow)

    round = relationship("RoundORM")
    team1 = relationship("TournamentTeamORM", foreign_keys=[team1_tt_id])
    team2 = relationship("TournamentTeamORM", foreign_keys=[team2_tt_id])

    @property
    def is_placeholder(self) -> bool:
        return self.team1_tt_id is None and self.team2_tt_id is None


class MatchORM(Base):
    """Match table."""

    __tablename__ = "matches"

    id = Column(Integer, primary_key=True, autoincrement=True)
    tournament_id = Column(Integer, ForeignKey("tournaments.id"), nullable=False)
    round_id = Column(Integer, ForeignKey("rounds.id"), nullable=True)
    tie_id = Column(Integer, ForeignKey("ties.id"), nullable=True)
    group_id = Column(Integer, ForeignKey("groups.id"), nullable=True)
    team1_tt_id = Column(Integer, ForeignKey("tournament_teams.id"), nullable=False)
    team2_tt_id = Column(Integer, ForeignKey("tournament_teams.id"), nullable=False)
    leg_number = Column(Integer, nullable=True)
    date = Column(DateTime, nullable=False, default=datetime.utcnow)
    status = Column(String(20), nullable=False, default=MatchStatus.SCHEDULED.value)
    team1_score = Column(Integer, nullable=False, default=0)
    team2_score = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    team1 = relationship("TournamentTeamORM", foreign_keys=[team1_tt_id])
    team2 = relationship("TournamentTeamORM", foreign_keys=[team2_tt_id])
    events = relationship("MatchEventORM", cascade="all, delete-orphan")
    participants = relationship("MatchParticipantORM", cascade="all, delete-orphan")
    referees = relationship("MatchRefereeORM", cascade="all, delete-orphan")

    @property
    def status_enum(self) -> MatchStatus:
        return MatchStatus(self.status)

    @property
    def is_finished(self) -> bool:
        return self.status == MatchStatus.FINISHED.value

    @property
    def side_ids(self) -> tuple[int, int]:
        return (self.team1_tt_id, self.team2_tt_id)

    def to_payload(self) -> dict:
        """Serializable form used for notifications."""
        return {
            "match_id": self.id,
            "tie_id": self.tie_id,
            "status": self.status,
            "team1_tt_id": self.team1_tt_id,
            "team2_tt_id": self.team2_tt_id,
            "team1_score": self.team1_score,
            "team2_score": self.team2_score,
        }


class MatchEventORM(Base):
    """In-match event table (goals, assists, cards)."""

    __tablename__ = "match_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    match_id = Column(Integer, ForeignKey("matches.id"), nullable=False)
    tournament_team_id = Column(Integer, ForeignKey("tournament_teams.id"), nullable=False)
    roster_item_id = Column(Integer, ForeignKey("roster_items.id"), nullable=True)
    assist_roster_item_id = Column(Integer, ForeignKey("roster_items.id"), nullable=True)
    type = Column(String(20), nullable=False)
    minute = Column(Integer, nullable=False, default=0)
    half = Column(Integer, nullable=False, default=1)
    description = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    @property
    def type_enum(self) -> EventType:
        return EventType(self.type)


class MatchParticipantORM(Base):
    """Published lineup row (TournamentPlayerMatch)."""

    __tablename__ = "match_participants"
    __table_args__ = (UniqueConstraint("match_id", "roster_item_id"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    match_id = Column(Integer, ForeignKey("matches.id"), nullable=False)
    roster_item_id = Column(Integer, ForeignKey("roster_items.id"), nullable=False)
    role = Column(String(20), nullable=False, default=RosterRole.STARTER.value)
    position = Column(String(30), nullable=True)
    is_captain = Column(Boolean, nullable=False, default=False)
    order_index = Column(Integer, nullable=False, default=0)

    roster_item = relationship("RosterItemORM")


class SuspensionORM(Base):
    """Suspension table.

    ``scope_key`` records the accumulation scope the triggering count was
    made in ("TOURNAMENT", "ROUND:<id>" or "GROUP:<id>").
    """

    __tablename__ = "suspensions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    tournament_id = Column(Integer, ForeignKey("tournaments.id"), nullable=False)
    roster_item_id = Column(Integer, ForeignKey("roster_items.id"), nullable=False)
    reason = Column(String(20), nullable=False)
    scope_key = Column(String(40), nullable=False, default=AccumulationScope.TOURNAMENT.value)
    trigger_match_id = Column(Integer, ForeignKey("matches.id"), nullable=True)
    starts_after = Column(DateTime, nullable=False)
    remaining_games = Column(Integer, nullable=False, default=1)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    servings = relationship("SuspensionServingORM", cascade="all, delete-orphan")

    @property
    def reason_enum(self) -> SuspensionReason:
        return SuspensionReason(self.reason)

    def applies_to(self, match_date: datetime) -> bool:
        """True if this suspension bars the player from a match on ``match_date``."""
        return bool(self.is_active) and self.remaining_games > 0 and self.starts_after < match_date

    def to_payload(self) -> dict:
        """Serializable form used for notifications."""
        return {
            "suspension_id": self.id,
            "roster_item_id": self.roster_item_id,
            "reason": self.reason,
            "remaining_games": self.remaining_games,
            "is_active": bool(self.is_active),
        }


class SuspensionServingORM(Base):
    """One row per match a suspension was served in."""

    __tablename__ = "suspension_servings"
    __table_args__ = (UniqueConstraint("suspension_id", "match_id"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    suspension_id = Column(Integer, ForeignKey("suspensions.id"), nullable=False)
    match_id = Column(Integer, ForeignKey("matches.id"), nullable=False)
    served_at = Column(DateTime, default=datetime.utcnow)


class PlayerStatORM(Base):
    """Running per-player totals, kept in step with match events."""

    __tablename__ = "player_stats"

    id = Column(Integer, primary_key=True, autoincrement=True)
    player_id = Column(Integer, ForeignKey("players.id"), nullable=False, unique=True)
    goals = Column(Integer, nullable=False, default=0)
    assists = Column(Integer, nullable=False, default=0)
    yellow_cards = Column(Integer, nullable=False, default=0)
    red_cards = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def to_dict(self) -> dict:
        return {
            "player_id": self.player_id,
            "goals": self.goals,
            "assists": self.assists,
            "yellow_cards": self.yellow_cards,
            "red_cards": self.red_cards,
        }


class RefereeORM(Base):
    """Referee table."""

    __tablename__ = "referees"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(200), nullable=False, unique=True)
    created_at = Column(DateTime, default=datetime.utcnow)


class MatchRefereeORM(Base):
    """Referee assigned to a match, with an optional role (main, assistant, ...)."""

    __tablename__ = "match_referees"
    __table_args__ = (UniqueConstraint("match_id", "referee_id"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    match_id = Column(Integer, ForeignKey("matches.id"), nullable=False)
    referee_id = Column(Integer, ForeignKey("referees.id"), nullable=False)
    role = Column(String(50), nullable=True)

    referee = relationship("RefereeORM")


# ============================================================================
# Database Manager
# ============================================================================


class DatabaseManager:
    """Manages SQLite database connection and session."""

    def __init__(self, db_path: str = ".cupcore/cupcore.sqlite"):
        """Initialize database manager.

        Args:
            db_path: Path to SQLite database file, or ":memory:" for a
                private in-memory database shared by all sessions
        """
        if db_path == ":memory:":
            self.db_path = None
            self.engine = create_engine(
                "sqlite://",
                echo=False,
                poolclass=StaticPool,
                connect_args={"check_same_thread": False},
            )
        else:
            self.db_path = Path(db_path)
            self.db_path.parent.mkdir(parents=True, exist_ok=True)

            # Use NullPool for SQLite to avoid connection pool issues
            self.engine = create_engine(
                f"sqlite:///{self.db_path}",
                echo=False,
                poolclass=NullPool,
                connect_args={"check_same_thread": False},
            )
        self.SessionLocal = sessionmaker(bind=self.engine)

    def create_tables(self):
        """Create all tables in the database."""
        Base.metadata.create_all(self.engine)

    def drop_tables(self):
        """Drop all tables (use with caution!)."""
        Base.metadata.drop_all(self.engine)

    def get_session(self):
        """Get a new database session."""
        return self.SessionLocal()


# ============================================================================
# Transactions
# ============================================================================

_ATOMIC_DEPTH = "cupcore.atomic_depth"
_AFTER_COMMIT = "cupcore.after_commit"


@contextmanager
def atomic(session):
    """Run a block as one transaction.

    Re-entrant: only the outermost block commits. Any exception rolls back
    every write made since the outermost block began and discards queued
    after-commit callbacks. Callbacks run once the commit has succeeded.
    """
    depth = session.info.get(_ATOMIC_DEPTH, 0)
    session.info[_ATOMIC_DEPTH] = depth + 1
    try:
        yield session
        if depth == 0:
            session.commit()
    except Exception:
        if depth == 0:
            session.rollback()
            session.info.pop(_AFTER_COMMIT, None)
        raise
    finally:
        session.info[_ATOMIC_DEPTH] = depth

    if depth == 0:
        for callback in session.info.pop(_AFTER_COMMIT, []):
            callback()


def on_commit(session, callback: Callable[[], None]) -> None:
    """Run ``callback`` after the enclosing ``atomic`` block commits.

    Outside of a transaction the callback runs immediately.
    """
    if session.info.get(_ATOMIC_DEPTH, 0) == 0:
        callback()
        return
    session.info.setdefault(_AFTER_COMMIT, []).append(callback)


# Entries go away once no caller holds the lock
_tournament_locks = weakref.WeakValueDictionary()
_tournament_locks_guard = threading.Lock()


@contextmanager
def tournament_lock(tournament_id: int):
    """Serialize composite operations on one tournament within this process."""
    with _tournament_locks_guard:
        lock = _tournament_locks.get(tournament_id)
        if lock is None:
            lock = _tournament_locks[tournament_id] = threading.RLock()
    with lock:
        yield


# ============================================================================
# Repository Pattern
# ============================================================================


def _get_required(session, orm_class, entity_id: int, entity: str):
    item = session.get(orm_class, entity_id) if entity_id is not None else None
    if item is None:
        raise NotFoundError(entity, entity_id)
    return item


class TournamentRepository:
    """Repository for Tournament operations."""

    def __init__(self, session):
        self.session = session

    def create(
        self,
        title: str,
        start_date: Optional[datetime] = None,
        team_format: TeamFormat = TeamFormat.ELEVEN,
        policy: Optional[DisciplinePolicy] = None,
        season: Optional[str] = None,
        city: Optional[str] = None,
    ) -> TournamentORM:
        """Create a new tournament.

        Args:
            title: Tournament title
            start_date: First day of competition
            team_format: Team format (determines max starters)
            policy: Discipline policy (defaults to DisciplinePolicy())
            season: Season label, e.g. "2025/26"
            city: Host city

        Returns:
            Created TournamentORM instance with auto-generated ID
        """
        tournament = TournamentORM(
            title=title,
            season=season,
            city=city,
            start_date=start_date,
            team_format=TeamFormat(team_format).value,
        )
        tournament.policy = policy or DisciplinePolicy()
        self.session.add(tournament)
        self.session.flush()
        return tournament

    def get_by_id(self, tournament_id: int) -> Optional[TournamentORM]:
        """Get tournament by ID."""
        return self.session.get(TournamentORM, tournament_id)

    def get_required(self, tournament_id: int) -> TournamentORM:
        """Get tournament by ID or raise NotFoundError."""
        return _get_required(self.session, TournamentORM, tournament_id, "Tournament")

    def get_all(self) -> list[TournamentORM]:
        """Get all tournaments ordered by start date (newest first)."""
        return self.session.query(TournamentORM).order_by(
            TournamentORM.start_date.desc()
        ).all()


class TeamRepository:
    """Repository for clubs and their players."""

    def __init__(self, session):
        self.session = session

    def create(self, name: str, city: Optional[str] = None) -> TeamORM:
        team = TeamORM(name=name, city=city)
        self.session.add(team)
        self.session.flush()
        return team

    def get_by_id(self, team_id: int) -> Optional[TeamORM]:
        return self.session.get(TeamORM, team_id)

    def get_required(self, team_id: int) -> TeamORM:
        return _get_required(self.session, TeamORM, team_id, "Team")

    def get_by_name(self, name: str) -> Optional[TeamORM]:
        return self.session.query(TeamORM).filter(TeamORM.name == name).first()

    def add_player(self, team_id: int, first_name: str, last_name: str = "") -> PlayerORM:
        """Register a player with a club.

        Args:
            team_id: Club ID
            first_name: Player first name
            last_name: Player last name

        Returns:
            Created PlayerORM instance
        """
        player = PlayerORM(first_name=first_name, last_name=last_name, team_id=team_id)
        self.session.add(player)
        self.session.flush()
        return player

    def get_player(self, player_id: int) -> Optional[PlayerORM]:
        return self.session.get(PlayerORM, player_id)


class TournamentTeamRepository:
    """Repository for tournament enrollments."""

    def __init__(self, session):
        self.session = session

    def get_by_id(self, tournament_team_id: int) -> Optional[TournamentTeamORM]:
        return self.session.get(TournamentTeamORM, tournament_team_id)

    def get_required(self, tournament_team_id: int) -> TournamentTeamORM:
        return _get_required(
            self.session, TournamentTeamORM, tournament_team_id, "TournamentTeam"
        )

    def get(self, tournament_id: int, team_id: int) -> Optional[TournamentTeamORM]:
        """Get the enrollment of a club in a tournament."""
        return (
            self.session.query(TournamentTeamORM)
            .filter(TournamentTeamORM.tournament_id == tournament_id)
            .filter(TournamentTeamORM.team_id == team_id)
            .first()
        )

    def get_by_tournament(self, tournament_id: int) -> list[TournamentTeamORM]:
        """Get all enrollments of a tournament.

        Returns:
            List sorted by seed (unseeded last), then ID
        """
        rows = (
            self.session.query(TournamentTeamORM)
            .filter(TournamentTeamORM.tournament_id == tournament_id)
            .all()
        )
        return sorted(rows, key=lambda tt: (tt.seed is None, tt.seed or 0, tt.id))

    def upsert(self, tournament_id: int, team_id: int, seed: Optional[int] = None) -> TournamentTeamORM:
        """Enroll a club, or update its seed if already enrolled."""
        tt = self.get(tournament_id, team_id)
        if tt is None:
            tt = TournamentTeamORM(tournament_id=tournament_id, team_id=team_id, seed=seed)
            self.session.add(tt)
        else:
            tt.seed = seed
        self.session.flush()
        return tt

    def has_fixtures(self, tournament_team_id: int) -> bool:
        """True if any tie or match references the enrollment."""
        tie = (
            self.session.query(TieORM.id)
            .filter(
                (TieORM.team1_tt_id == tournament_team_id)
                | (TieORM.team2_tt_id == tournament_team_id)
            )
            .first()
        )
        if tie is not None:
            return True
        match = (
            self.session.query(MatchORM.id)
            .filter(
                (MatchORM.team1_tt_id == tournament_team_id)
                | (MatchORM.team2_tt_id == tournament_team_id)
            )
            .first()
        )
        return match is not None

    def delete(self, tt: TournamentTeamORM) -> None:
        self.session.delete(tt)
        self.session.flush()


class RosterRepository:
    """Repository for competition roster items."""

    def __init__(self, session):
        self.session = session

    def create(
        self,
        tournament_team_id: int,
        player_id: int,
        number: Optional[int] = None,
        position: Optional[str] = None,
        role: Optional[RosterRole] = None,
        notes: Optional[str] = None,
    ) -> RosterItemORM:
        item = RosterItemORM(
            tournament_team_id=tournament_team_id,
            player_id=player_id,
            number=number,
            position=position,
            role=RosterRole(role or RosterRole.STARTER).value,
            notes=notes,
        )
        self.session.add(item)
        self.session.flush()
        return item

    def get_by_id(self, roster_item_id: int) -> Optional[RosterItemORM]:
        return self.session.get(RosterItemORM, roster_item_id)

    def get_required(self, roster_item_id: int) -> RosterItemORM:
        return _get_required(self.session, RosterItemORM, roster_item_id, "RosterItem")

    def get_by_player(self, tournament_team_id: int, player_id: int) -> Optional[RosterItemORM]:
        return (
            self.session.query(RosterItemORM)
            .filter(RosterItemORM.tournament_team_id == tournament_team_id)
            .filter(RosterItemORM.player_id == player_id)
            .first()
        )

    def get_by_team(
        self, tournament_team_id: int, role: Optional[RosterRole] = None
    ) -> list[RosterItemORM]:
        """Get a team's roster.

        Args:
            tournament_team_id: Enrollment ID
            role: Optional role to filter by

        Returns:
            List of RosterItemORM sorted by role (starters first), shirt
            number (unnumbered last), then ID
        """
        query = self.session.query(RosterItemORM).filter(
            RosterItemORM.tournament_team_id == tournament_team_id
        )
        if role is not None:
            query = query.filter(RosterItemORM.role == RosterRole(role).value)
        return sorted(
            query.all(),
            key=lambda r: (r.role_enum.rank, r.number is None, r.number or 0, r.id),
        )

    def get_ids_by_team(self, tournament_team_ids: Iterable[int]) -> list[int]:
        ids = list(tournament_team_ids)
        if not ids:
            return []
        rows = (
            self.session.query(RosterItemORM.id)
            .filter(RosterItemORM.tournament_team_id.in_(ids))
            .all()
        )
        return [row[0] for row in rows]

    def delete_by_team(self, tournament_team_id: int) -> int:
        """Delete all roster items of a team. Returns the count deleted."""
        items = self.get_by_team(tournament_team_id)
        for item in items:
            self.session.delete(item)
        self.session.flush()
        return len(items)

    def delete(self, item: RosterItemORM) -> None:
        self.session.delete(item)
        self.session.flush()


class RoundRepository:
    """Repository for rounds."""

    def __init__(self, session):
        self.session = session

    def get_by_id(self, round_id: int) -> Optional[RoundORM]:
        return self.session.get(RoundORM, round_id)

    def get_required(self, round_id: int) -> RoundORM:
        return _get_required(self.session, RoundORM, round_id, "Round")

    def get_by_stage(self, tournament_id: int, stage: Stage) -> Optional[RoundORM]:
        return (
            self.session.query(RoundORM)
            .filter(RoundORM.tournament_id == tournament_id)
            .filter(RoundORM.stage == Stage(stage).value)
            .first()
        )

    def get_or_create(
        self,
        tournament_id: int,
        stage: Stage,
        number: Optional[int] = None,
        name: Optional[str] = None,
        date: Optional[datetime] = None,
    ) -> RoundORM:
        """Get the tournament's round for a stage, creating it if missing."""
        round_orm = self.get_by_stage(tournament_id, stage)
        if round_orm is None:
            round_orm = RoundORM(
                tournament_id=tournament_id,
                stage=Stage(stage).value,
                number=number,
                name=name,
                date=date,
            )
            self.session.add(round_orm)
            self.session.flush()
        return round_orm

    def create(self, tournament_id: int, stage: Stage, number=None, name=None, date=None) -> RoundORM:
        round_orm = RoundORM(
            tournament_id=tournament_id,
            stage=Stage(stage).value,
            number=number,
            name=name,
            date=date,
        )
        self.session.add(round_orm)
        self.session.flush()
        return round_orm

    def get_by_tournament(self, tournament_id: int) -> list[RoundORM]:
        return (
            self.session.query(RoundORM)
            .filter(RoundORM.tournament_id == tournament_id)
            .order_by(RoundORM.id)
            .all()
        )

    def get_by_stages(self, tournament_id: int, stages: Iterable[Stage]) -> list[RoundORM]:
        values = [Stage(s).value for s in stages]
        return (
            self.session.query(RoundORM)
            .filter(RoundORM.tournament_id == tournament_id)
            .filter(RoundORM.stage.in_(values))
            .all()
        )


class GroupRepository:
    """Repository for round-robin groups."""

    def __init__(self, session):
        self.session = session

    def create(
        self,
        tournament_id: int,
        name: str,
        team_ids: list[int],
        round_id: Optional[int] = None,
    ) -> GroupORM:
        """Create a group of tournament teams.

        Args:
            tournament_id: Owning tournament
            name: Group label ("A", "B", ...)
            team_ids: Tournament team IDs in scheduling order
            round_id: Optional round the group belongs to

        Returns:
            Created GroupORM instance
        """
        group = GroupORM(tournament_id=tournament_id, name=name, round_id=round_id)
        group.team_ids = team_ids
        self.session.add(group)
        self.session.flush()
        return group

    def get_by_id(self, group_id: int) -> Optional[GroupORM]:
        return self.session.get(GroupORM, group_id)

    def get_required(self, group_id: int) -> GroupORM:
        return _get_required(self.session, GroupORM, group_id, "Group")


class TieRepository:
    """Repository for ties."""

    def __init__(self, session):
        self.session = session

    def create(
        self,
        tournament_id: int,
        round_id: int,
        team1_tt_id: Optional[int] = None,
        team2_tt_id: Optional[int] = None,
        legs: int = 1,
    ) -> TieORM:
        tie = TieORM(
            tournament_id=tournament_id,
            round_id=round_id,
            team1_tt_id=team1_tt_id,
            team2_tt_id=team2_tt_id,
            legs=legs,
        )
        self.session.add(tie)
        self.session.flush()
        return tie

    def get_by_id(self, tie_id: int) -> Optional[TieORM]:
        return self.session.get(TieORM, tie_id)

    def get_required(self, tie_id: int) -> TieORM:
        return _get_required(self.session, TieORM, tie_id, "Tie")

    def get_by_round(self, round_id: int) -> list[TieORM]:
        return (
            self.session.query(TieORM)
            .filter(TieORM.round_id == round_id)
            .order_by(TieORM.id)
            .all()
        )

    def get_by_tournament(self, tournament_id: int) -> list[TieORM]:
        """Get all ties of a tournament ordered by round, then ID."""
        return (
            self.session.query(TieORM)
            .filter(TieORM.tournament_id == tournament_id)
            .order_by(TieORM.round_id, TieORM.id)
            .all()
        )

    def count_by_tournament(self, tournament_id: int) -> int:
        return (
            self.session.query(func.count(TieORM.id))
            .filter(TieORM.tournament_id == tournament_id)
            .scalar()
        )


class MatchRepository:
    """Repository for matches."""

    def __init__(self, session):
        self.session = session

    def create(
        self,
        tournament_id: int,
        team1_tt_id: int,
        team2_tt_id: int,
        date: datetime,
        round_id: Optional[int] = None,
        tie_id: Optional[int] = None,
        group_id: Optional[int] = None,
        leg_number: Optional[int] = None,
    ) -> MatchORM:
        """Create a new scheduled match.

        Returns:
            Created MatchORM instance
        """
        match = MatchORM(
            tournament_id=tournament_id,
            team1_tt_id=team1_tt_id,
            team2_tt_id=team2_tt_id,
            date=date,
            round_id=round_id,
            tie_id=tie_id,
            group_id=group_id,
            leg_number=leg_number,
            status=MatchStatus.SCHEDULED.value,
            team1_score=0,
            team2_score=0,
        )
        self.session.add(match)
        self.session.flush()
        return match

    def get_by_id(self, match_id: int) -> Optional[MatchORM]:
        return self.session.get(MatchORM, match_id)

    def get_required(self, match_id: int) -> MatchORM:
        return _get_required(self.session, MatchORM, match_id, "Match")

    def get_by_tie(self, tie_id: int, status: Optional[MatchStatus] = None) -> list[MatchORM]:
        """Get the legs of a tie, optionally filtered by status."""
        query = self.session.query(MatchORM).filter(MatchORM.tie_id == tie_id)
        if status is not None:
            query = query.filter(MatchORM.status == MatchStatus(status).value)
        return query.order_by(MatchORM.leg_number, MatchORM.id).all()

    def get_by_group(self, group_id: int) -> list[MatchORM]:
        return (
            self.session.query(MatchORM)
            .filter(MatchORM.group_id == group_id)
            .order_by(MatchORM.date, MatchORM.id)
            .all()
        )

    def get_by_rounds(self, round_ids: Iterable[int]) -> list[MatchORM]:
        ids = list(round_ids)
        if not ids:
            return []
        return self.session.query(MatchORM).filter(MatchORM.round_id.in_(ids)).all()

    def get_finished_by_tournament(self, tournament_id: int) -> list[MatchORM]:
        """Get FINISHED matches of a tournament in chronological order."""
        return (
            self.session.query(MatchORM)
            .filter(MatchORM.tournament_id == tournament_id)
            .filter(MatchORM.status == MatchStatus.FINISHED.value)
            .order_by(MatchORM.date, MatchORM.id)
            .all()
        )

    def delete(self, match: MatchORM) -> None:
        """Delete a match with its events, lineup, referees and suspension servings.

        Player totals from its events are taken back. Suspensions it
        triggered lose their trigger link; callers rebuild discipline when
        the deleted match carried cards or servings.
        """
        triggered = self.session.query(SuspensionORM).filter(SuspensionORM.trigger_match_id == match.id).all()
        for suspension in triggered:
            suspension.trigger_match_id = None
        servings = (
            self.session.query(SuspensionServingORM)
            .filter(SuspensionServingORM.match_id == match.id)
            .all()
        )
        for serving in servings:
            self.session.get(SuspensionORM, serving.suspension_id).servings.remove(serving)
        stats = PlayerStatRepository(self.session)
        for event in match.events:
            stats.apply_event(event, -1)
        self.session.delete(match)
        self.session.flush()

    def touches_discipline(self, match: MatchORM) -> bool:
        """True if the match has card events or served a suspension."""
        if any(EventType(e.type).is_card for e in match.events):
            return True
        return (
            self.session.query(SuspensionServingORM.id)
            .filter(SuspensionServingORM.match_id == match.id)
            .first()
            is not None
        )


class EventRepository:
    """Repository for match events."""

    def __init__(self, session):
        self.session = session

    def create(
        self,
        match_id: int,
        tournament_team_id: int,
        event_type: EventType,
        roster_item_id: Optional[int] = None,
        minute: int = 0,
        half: int = 1,
        assist_roster_item_id: Optional[int] = None,
        description: Optional[str] = None,
    ) -> MatchEventORM:
        event = MatchEventORM(
            match_id=match_id,
            tournament_team_id=tournament_team_id,
            type=EventType(event_type).value,
            roster_item_id=roster_item_id,
            minute=minute,
            half=half,
            assist_roster_item_id=assist_roster_item_id,
            description=description,
        )
        self.session.add(event)
        self.session.flush()
        return event

    def get_by_id(self, event_id: int) -> Optional[MatchEventORM]:
        return self.session.get(MatchEventORM, event_id)

    def get_required(self, event_id: int) -> MatchEventORM:
        return _get_required(self.session, MatchEventORM, event_id, "MatchEvent")

    def delete(self, event: MatchEventORM) -> None:
        self.session.delete(event)
        self.session.flush()

    def get_by_match(self, match_id: int) -> list[MatchEventORM]:
        return (
            self.session.query(MatchEventORM)
            .filter(MatchEventORM.match_id == match_id)
            .order_by(MatchEventORM.half, MatchEventORM.minute, MatchEventORM.id)
            .all()
        )

    def count_goals(self, match_id: int, tournament_team_id: int) -> int:
        """Count GOAL and PENALTY_SCORED events credited to one side."""
        return (
            self.session.query(func.count(MatchEventORM.id))
            .filter(MatchEventORM.match_id == match_id)
            .filter(MatchEventORM.tournament_team_id == tournament_team_id)
            .filter(
                MatchEventORM.type.in_([EventType.GOAL.value, EventType.PENALTY_SCORED.value])
            )
            .scalar()
        )

    def get_player_cards(
        self,
        roster_item_id: int,
        card_type: EventType,
        tournament_id: int,
        round_id: Optional[int] = None,
        group_id: Optional[int] = None,
    ) -> list[MatchORM]:
        """Get the matches of a player's cards of one colour, oldest first.

        Args:
            roster_item_id: Carded roster item
            card_type: YELLOW_CARD or RED_CARD
            tournament_id: Tournament to count in
            round_id: Restrict to matches of this round
            group_id: Restrict to matches of this group

        Returns:
            One match per card event, ordered like get_cards_chronological
        """
        query = (
            self.session.query(MatchEventORM, MatchORM)
            .join(MatchORM, MatchORM.id == MatchEventORM.match_id)
            .filter(MatchORM.tournament_id == tournament_id)
            .filter(MatchEventORM.roster_item_id == roster_item_id)
            .filter(MatchEventORM.type == EventType(card_type).value)
        )
        if round_id is not None:
            query = query.filter(MatchORM.round_id == round_id)
        if group_id is not None:
            query = query.filter(MatchORM.group_id == group_id)
        rows = query.order_by(
            MatchORM.date,
            MatchORM.id,
            MatchEventORM.half,
            MatchEventORM.minute,
            MatchEventORM.id,
        ).all()
        return [match for _, match in rows]

    def get_cards_chronological(self, tournament_id: int) -> list[tuple[MatchEventORM, MatchORM]]:
        """Get all card events of a tournament with their matches.

        Returns:
            List of (event, match) ordered by match date, match ID, half,
            minute, event ID
        """
        return (
            self.session.query(MatchEventORM, MatchORM)
            .join(MatchORM, MatchORM.id == MatchEventORM.match_id)
            .filter(MatchORM.tournament_id == tournament_id)
            .filter(
                MatchEventORM.type.in_([EventType.YELLOW_CARD.value, EventType.RED_CARD.value])
            )
            .filter(MatchEventORM.roster_item_id.isnot(None))
            .order_by(
                MatchORM.date,
                MatchORM.id,
                MatchEventORM.half,
                MatchEventORM.minute,
                MatchEventORM.id,
            )
            .all()
        )


class ParticipantRepository:
    """Repository for published match lineups."""

    def __init__(self, session):
        self.session = session

    def create(
        self,
        match_id: int,
        roster_item_id: int,
        role: RosterRole,
        position: Optional[str] = None,
        is_captain: bool = False,
        order_index: int = 0,
    ) -> MatchParticipantORM:
        participant = MatchParticipantORM(
            match_id=match_id,
            roster_item_id=roster_item_id,
            role=RosterRole(role).value,
            position=position,
            is_captain=is_captain,
            order_index=order_index,
        )
        self.session.add(participant)
        self.session.flush()
        return participant

    def get_by_match(self, match_id: int) -> list[MatchParticipantORM]:
        """Get a match's lineup ordered by role, then order."""
        rows = (
            self.session.query(MatchParticipantORM)
            .filter(MatchParticipantORM.match_id == match_id)
            .all()
        )
        return sorted(rows, key=lambda p: (RosterRole(p.role).rank, p.order_index, p.id))

    def get_by_match_and_team(self, match_id: int, tournament_team_id: int) -> list[MatchParticipantORM]:
        """Get the lineup rows one team has published for a match."""
        rows = (
            self.session.query(MatchParticipantORM)
            .join(RosterItemORM, RosterItemORM.id == MatchParticipantORM.roster_item_id)
            .filter(MatchParticipantORM.match_id == match_id)
            .filter(RosterItemORM.tournament_team_id == tournament_team_id)
            .all()
        )
        return sorted(rows, key=lambda p: (RosterRole(p.role).rank, p.order_index, p.id))

    def delete_for_team(self, match_id: int, tournament_team_id: int) -> int:
        """Delete one team's lineup rows for a match. Returns the count deleted."""
        rows = self.get_by_match_and_team(match_id, tournament_team_id)
        for row in rows:
            self.session.delete(row)
        self.session.flush()
        return len(rows)


class SuspensionRepository:
    """Repository for suspensions and their servings."""

    def __init__(self, session):
        self.session = session

    def create(
        self,
        tournament_id: int,
        roster_item_id: int,
        reason: SuspensionReason,
        starts_after: datetime,
        remaining_games: int,
        trigger_match_id: Optional[int] = None,
        scope_key: str = AccumulationScope.TOURNAMENT.value,
    ) -> SuspensionORM:
        suspension = SuspensionORM(
            tournament_id=tournament_id,
            roster_item_id=roster_item_id,
            reason=SuspensionReason(reason).value,
            scope_key=scope_key,
            trigger_match_id=trigger_match_id,
            starts_after=starts_after,
            remaining_games=remaining_games,
            is_active=remaining_games > 0,
        )
        self.session.add(suspension)
        self.session.flush()
        return suspension

    def get_by_id(self, suspension_id: int) -> Optional[SuspensionORM]:
        return self.session.get(SuspensionORM, suspension_id)

    def get_by_tournament(self, tournament_id: int) -> list[SuspensionORM]:
        return (
            self.session.query(SuspensionORM)
            .filter(SuspensionORM.tournament_id == tournament_id)
            .order_by(SuspensionORM.id)
            .all()
        )

    def get_by_roster_item(self, roster_item_id: int) -> list[SuspensionORM]:
        return (
            self.session.query(SuspensionORM)
            .filter(SuspensionORM.roster_item_id == roster_item_id)
            .order_by(SuspensionORM.id)
            .all()
        )

    def get_active_for_roster_items(self, roster_item_ids: Iterable[int]) -> list[SuspensionORM]:
        """Get active suspensions with games left for any of the roster items."""
        ids = list(roster_item_ids)
        if not ids:
            return []
        return (
            self.session.query(SuspensionORM)
            .filter(SuspensionORM.roster_item_id.in_(ids))
            .filter(SuspensionORM.is_active.is_(True))
            .filter(SuspensionORM.remaining_games > 0)
            .order_by(SuspensionORM.id)
            .all()
        )

    def exists_in_scope(
        self, roster_item_id: int, reason: SuspensionReason, scope_key: str
    ) -> bool:
        return (
            self.session.query(SuspensionORM.id)
            .filter(SuspensionORM.roster_item_id == roster_item_id)
            .filter(SuspensionORM.reason == SuspensionReason(reason).value)
            .filter(SuspensionORM.scope_key == scope_key)
            .first()
            is not None
        )

    def delete_by_tournament(self, tournament_id: int) -> int:
        """Delete every suspension of a tournament, servings included."""
        suspensions = self.get_by_tournament(tournament_id)
        for suspension in suspensions:
            self.session.delete(suspension)
        self.session.flush()
        return len(suspensions)

    def has_serving(self, suspension_id: int, match_id: int) -> bool:
        return (
            self.session.query(SuspensionServingORM.id)
            .filter(SuspensionServingORM.suspension_id == suspension_id)
            .filter(SuspensionServingORM.match_id == match_id)
            .first()
            is not None
        )

    def add_serving(self, suspension: SuspensionORM, match_id: int) -> SuspensionServingORM:
        serving = SuspensionServingORM(suspension_id=suspension.id, match_id=match_id)
        suspension.servings.append(serving)
        self.session.flush()
        return serving


_STAT_COLUMNS = {
    EventType.GOAL: "goals",
    EventType.PENALTY_SCORED: "goals",
    EventType.ASSIST: "assists",
    EventType.YELLOW_CARD: "yellow_cards",
    EventType.RED_CARD: "red_cards",
}


class PlayerStatRepository:
    """Repository for per-player event totals."""

    def __init__(self, session):
        self.session = session

    def get(self, player_id: int) -> Optional[PlayerStatORM]:
        return (
            self.session.query(PlayerStatORM)
            .filter(PlayerStatORM.player_id == player_id)
            .first()
        )

    def _adjust(self, roster_item_id: int, column: str, delta: int) -> None:
        item = self.session.get(RosterItemORM, roster_item_id)
        if item is None:
            return
        stat = self.get(item.player_id)
        if stat is None:
            stat = PlayerStatORM(player_id=item.player_id, goals=0, assists=0, yellow_cards=0, red_cards=0)
            self.session.add(stat)
        setattr(stat, column, max(0, getattr(stat, column) + delta))

    def apply_event(self, event: MatchEventORM, delta: int) -> None:
        """Add (``delta=1``) or take back (``delta=-1``) an event's totals.

        The event's player gets the counter for its type; the assisting
        player of a GOAL gets an assist. Totals never go below zero.
        """
        event_type = EventType(event.type)
        if event.roster_item_id is not None:
            self._adjust(event.roster_item_id, _STAT_COLUMNS[event_type], delta)
        if event_type == EventType.GOAL and event.assist_roster_item_id is not None:
            self._adjust(event.assist_roster_item_id, "assists", delta)
        self.session.flush()


class RefereeRepository:
    """Repository for referees and their match assignments."""

    def __init__(self, session):
        self.session = session

    def create(self, name: str) -> RefereeORM:
        referee = RefereeORM(name=name)
        self.session.add(referee)
        self.session.flush()
        return referee

    def get_required(self, referee_id: int) -> RefereeORM:
        return _get_required(self.session, RefereeORM, referee_id, "Referee")

    def get_by_name(self, name: str) -> Optional[RefereeORM]:
        return self.session.query(RefereeORM).filter(RefereeORM.name == name).first()

    def get_assignment(self, match_id: int, referee_id: int) -> Optional[MatchRefereeORM]:
        return (
            self.session.query(MatchRefereeORM)
            .filter(MatchRefereeORM.match_id == match_id)
            .filter(MatchRefereeORM.referee_id == referee_id)
            .first()
        )

    def get_by_match(self, match_id: int) -> list[MatchRefereeORM]:
        return (
            self.session.query(MatchRefereeORM)
            .filter(MatchRefereeORM.match_id == match_id)
            .order_by(MatchRefereeORM.id)
            .all()
        )

    def assign(self, match_id: int, referee_id: int, role: Optional[str] = None) -> MatchRefereeORM:
        assignment = MatchRefereeORM(match_id=match_id, referee_id=referee_id, role=role)
        self.session.add(assignment)
        self.session.flush()
        return assignment

    def delete_for_match(self, match_id: int) -> int:
        rows = self.get_by_match(match_id)
        for row in rows:
            self.session.delete(row)
        self.session.flush()
        return len(rows)
