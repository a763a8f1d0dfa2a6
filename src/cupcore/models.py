"""Domain types for cupcore.

Domain model hierarchy:
- Tournament enrolls Teams (TournamentTeam), each with a competition roster
- Tournament contains Rounds (knockout stages or group matchdays)
- Round contains Ties (knockout pairings) and optionally Groups
- Tie contains Matches (legs)
- Match contains Events (goals, cards) and Participants (published lineup)
- Matches are staffed by Referees; Players keep running event totals
- Suspensions are raised from card events and served by finished matches

Persistent entities live in ``cupcore.storage``; this module holds the closed
enumerations shared by every layer and the small value objects returned by
the engine operations.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional


class Stage(str, Enum):
    """Tournament round stages."""

    ROUND_OF_32 = "ROUND_OF_32"
    ROUND_OF_16 = "ROUND_OF_16"
    QUARTERFINAL = "QUARTERFINAL"
    SEMIFINAL = "SEMIFINAL"
    FINAL = "FINAL"
    THIRD_PLACE = "THIRD_PLACE"
    GROUP = "GROUP"  # Round-robin matchday


# Elimination stages from earliest to latest
STAGE_ORDER = [
    Stage.ROUND_OF_32,
    Stage.ROUND_OF_16,
    Stage.QUARTERFINAL,
    Stage.SEMIFINAL,
    Stage.FINAL,
]


class MatchStatus(str, Enum):
    """Match status. Transitions only move forward."""

    SCHEDULED = "SCHEDULED"
    LIVE = "LIVE"
    FINISHED = "FINISHED"


class BracketMode(str, Enum):
    """How first-round pairs are formed."""

    SEEDED = "SEEDED"
    RANDOM = "RANDOM"
    EXPLICIT = "EXPLICIT"


class RosterRole(str, Enum):
    """Role of a player on a competition roster."""

    STARTER = "STARTER"
    SUBSTITUTE = "SUBSTITUTE"
    RESERVE = "RESERVE"

    @property
    def rank(self) -> int:
        """Sort position used when listing rosters and lineups."""
        return _ROLE_RANK[self]


_ROLE_RANK = {
    RosterRole.STARTER: 0,
    RosterRole.SUBSTITUTE: 1,
    RosterRole.RESERVE: 2,
}


class RoleFilter(str, Enum):
    """Which roster items get published to a match."""

    ALL = "ALL"
    STARTER = "STARTER"


class EventType(str, Enum):
    """In-match event types."""

    GOAL = "GOAL"
    PENALTY_SCORED = "PENALTY_SCORED"
    ASSIST = "ASSIST"
    YELLOW_CARD = "YELLOW_CARD"
    RED_CARD = "RED_CARD"

    @property
    def is_goal(self) -> bool:
        return self in (EventType.GOAL, EventType.PENALTY_SCORED)

    @property
    def is_card(self) -> bool:
        return self in (EventType.YELLOW_CARD, EventType.RED_CARD)


class SuspensionReason(str, Enum):
    """Why a suspension was raised."""

    YELLOWS = "YELLOWS"
    RED = "RED"

    @classmethod
    def for_card(cls, card_type: EventType) -> "SuspensionReason":
        if card_type == EventType.RED_CARD:
            return cls.RED
        return cls.YELLOWS


class AccumulationScope(str, Enum):
    """Boundary within which card counts are tallied."""

    TOURNAMENT = "TOURNAMENT"
    ROUND = "ROUND"
    GROUP = "GROUP"


class TeamFormat(str, Enum):
    """Team format of a tournament (players on the pitch per side)."""

    FIVE = "5x5"
    SIX = "6x6"
    SEVEN = "7x7"
    EIGHT = "8x8"
    ELEVEN = "11x11"

    @property
    def max_starters(self) -> int:
        """Maximum number of STARTER roster items per team."""
        return int(self.value.split("x")[0])


# ============================================================================
# Value objects
# ============================================================================


@dataclass
class DisciplinePolicy:
    """Tournament-level discipline settings.

    A player whose same-colour card count within the accumulation scope
    reaches the threshold for that colour gets one suspension of
    ``suspension_games`` games.
    """

    enabled: bool = True
    scope: AccumulationScope = AccumulationScope.TOURNAMENT
    yellow_to_suspend: int = 2
    red_to_suspend: int = 1
    suspension_games: int = 1

    def threshold_for(self, card_type: EventType) -> int:
        """Return the card count that triggers a suspension."""
        if card_type == EventType.RED_CARD:
            return self.red_to_suspend
        return self.yellow_to_suspend


@dataclass
class Fixture:
    """A scheduled pairing produced by the round-robin scheduler.

    ``matchday`` is 0-indexed; mirrored fixtures of a double round robin keep
    the matchday of their first leg.
    """

    matchday: int
    team1_id: int
    team2_id: int
    date: Optional[datetime] = None
    is_mirror: bool = False

    def __str__(self) -> str:
        """String representation."""
        suffix = " (return)" if self.is_mirror else ""
        return f"MD{self.matchday + 1}: TT{self.team1_id} vs TT{self.team2_id}{suffix}"


@dataclass
class TieResult:
    """Aggregate result of a tie, computed from its FINISHED legs."""

    tie_id: int
    side1: int = 0
    side2: int = 0
    winner_tt_id: Optional[int] = None
    legs_counted: int = 0

    @property
    def aggregate(self) -> dict[str, int]:
        return {"side1": self.side1, "side2": self.side2}

    @property
    def is_level(self) -> bool:
        """True when neither side leads on aggregate."""
        return self.side1 == self.side2

    def to_payload(self) -> dict:
        """Serializable form used for notifications."""
        return {
            "tie_id": self.tie_id,
            "aggregate": self.aggregate,
            "winner_tt_id": self.winner_tt_id,
        }

    def __str__(self) -> str:
        """String representation."""
        winner = f"winner TT{self.winner_tt_id}" if self.winner_tt_id else "no winner"
        return f"Tie {self.tie_id}: {self.side1}-{self.side2} ({winner})"


@dataclass
class RosterEntry:
    """Input model for one row of a roster replacement."""

    player_id: int
    number: Optional[int] = None
    position: Optional[str] = None
    role: Optional[RosterRole] = None
    notes: Optional[str] = None


@dataclass
class RefereeAssignment:
    """A referee and the role they take in a match (main, assistant, ...)."""

    referee_id: int
    role: Optional[str] = None


@dataclass
class TeamRegistration:
    """A team registration read from an import file."""

    name: str
    seed: Optional[int] = None
    players: list[str] = field(default_factory=list)

    def __str__(self) -> str:
        """String representation."""
        seed_str = f"[{self.seed}] " if self.seed else ""
        return f"{seed_str}{self.name}"
