"""
Statistics reconciliation engine.

Turns a decided game into per-player and per-pair counter deltas. The same
deltas feed the persisted counters (applied on record, inverted on reversal)
and the pure leaderboard recomputation used by scoped views.
"""

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Tuple
from rallyboard.database.models import Side
from rallyboard.utils.constants import WIN_POINTS, LOSS_POINTS, MIN_ROSTER_SIZE, MAX_ROSTER_SIZE


PairKey = Tuple[str, str]


# ============================================================================
# Errors
# ============================================================================

class OutcomeError(ValueError):
    """Base class for outcome precondition violations."""


class InvalidRosterError(OutcomeError):
    """Rosters are empty, oversized, unequal in size or overlapping."""


class AlreadyDecidedError(OutcomeError):
    """The outcome already has a winner."""


class NotDecidedError(OutcomeError):
    """The outcome has no winner to reverse."""


# ============================================================================
# Helpers
# ============================================================================

def normalize_player_id(email: str) -> str:
    """Normalize a player identity (account email) to its join key."""
    if not isinstance(email, str) or not email.strip():
        raise InvalidRosterError("Player identity must be a non-empty email")
    return email.strip().lower()


def pair_key(player1: str, player2: str) -> PairKey:
    """Order-independent key for a doubles pair."""
    first, second = sorted((player1, player2))
    return first, second


def validate_rosters(side_a: Sequence[str], side_b: Sequence[str]) -> None:
    """
    Check roster shape: 1 vs 1 or 2 vs 2, no repeats, no overlap.

    Raises:
        InvalidRosterError: If any invariant is violated
    """
    if not side_a or not side_b:
        raise InvalidRosterError("Both sides need at least one player.")
    for roster in (side_a, side_b):
        if not MIN_ROSTER_SIZE <= len(roster) <= MAX_ROSTER_SIZE:
            raise InvalidRosterError("Singles require 1 vs 1, doubles require 2 vs 2 players.")
        if len(set(roster)) != len(roster):
            raise InvalidRosterError("A player cannot appear twice on the same side.")
    if len(side_a) != len(side_b):
        raise InvalidRosterError("Singles require 1 vs 1, doubles require 2 vs 2 players.")
    if set(side_a) & set(side_b):
        raise InvalidRosterError("A player cannot be on both sides.")


# ============================================================================
# Outcome
# ============================================================================

@dataclass(frozen=True)
class Outcome:
    """A game between two rosters with an optional winning side."""

    side_a: Tuple[str, ...]
    side_b: Tuple[str, ...]
    winner: Optional[Side] = None

    def __post_init__(self):
        side_a = tuple(normalize_player_id(p) for p in self.side_a)
        side_b = tuple(normalize_player_id(p) for p in self.side_b)
        validate_rosters(side_a, side_b)
        object.__setattr__(self, "side_a", side_a)
        object.__setattr__(self, "side_b", side_b)
        if self.winner is not None:
            object.__setattr__(self, "winner", Side(self.winner))

    @property
    def is_decided(self) -> bool:
        return self.winner is not None

    @property
    def is_doubles(self) -> bool:
        return len(self.side_a) == 2

    @property
    def players(self) -> Tuple[str, ...]:
        return self.side_a + self.side_b

    def roster(self, side: Side) -> Tuple[str, ...]:
        return self.side_a if Side(side) is Side.A else self.side_b

    def decide(self, side: Side) -> "Outcome":
        """Return a decided copy. Raises AlreadyDecidedError if a winner is set."""
        if self.is_decided:
            raise AlreadyDecidedError("Winner already selected.")
        return Outcome(self.side_a, self.side_b, Side(side))

    def undecide(self) -> "Outcome":
        """Return a pending copy. Raises NotDecidedError if no winner is set."""
        if not self.is_decided:
            raise NotDecidedError("Game has no winner to reverse.")
        return Outcome(self.side_a, self.side_b, None)


# ============================================================================
# Deltas
# ============================================================================

@dataclass
class PlayerDelta:
    points: int = 0
    wins: int = 0
    losses: int = 0

    def inverted(self) -> "PlayerDelta":
        return PlayerDelta(-self.points, -self.wins, -self.losses)


@dataclass
class PairDelta:
    plays: int = 0
    wins: int = 0

    def inverted(self) -> "PairDelta":
        return PairDelta(-self.plays, -self.wins)


@dataclass
class OutcomeDeltas:
    """Counter changes produced by one decided outcome."""

    players: Dict[str, PlayerDelta] = field(default_factory=dict)
    pairs: Dict[PairKey, PairDelta] = field(default_factory=dict)

    def inverted(self) -> "OutcomeDeltas":
        return OutcomeDeltas(
            players={p: d.inverted() for p, d in self.players.items()},
            pairs={k: d.inverted() for k, d in self.pairs.items()},
        )


def outcome_deltas(outcome: Outcome, side: Optional[Side] = None) -> OutcomeDeltas:
    """
    Compute the counter deltas for deciding ``outcome`` in favour of ``side``.

    If ``side`` is omitted the outcome's own winner is used. Winners earn
    WIN_POINTS and a win, losers LOSS_POINTS and a loss. Each doubles roster
    gets a play on its pair; the winning pair also gets a win.

    Raises:
        NotDecidedError: If no side is given and the outcome is pending
    """
    side = Side(side) if side is not None else outcome.winner
    if side is None:
        raise NotDecidedError("Game has no winner.")

    winners = outcome.roster(side)
    losers = outcome.roster(side.opponent)

    deltas = OutcomeDeltas()
    for player in winners:
        deltas.players[player] = PlayerDelta(points=WIN_POINTS, wins=1)
    for player in losers:
        deltas.players[player] = PlayerDelta(points=LOSS_POINTS, losses=1)

    if outcome.is_doubles:
        deltas.pairs[pair_key(*winners)] = PairDelta(plays=1, wins=1)
        deltas.pairs[pair_key(*losers)] = PairDelta(plays=1, wins=0)

    return deltas


def reversal_deltas(outcome: Outcome) -> OutcomeDeltas:
    """
    Deltas that undo a decided outcome.

    Raises:
        NotDecidedError: If the outcome is pending
    """
    if not outcome.is_decided:
        raise NotDecidedError("Game has no winner to reverse.")
    return outcome_deltas(outcome).inverted()


# ============================================================================
# Leaderboards
# ============================================================================

@dataclass
class LeaderboardEntry:
    player: str
    wins: int = 0
    losses: int = 0
    points: int = 0

    @property
    def games(self) -> int:
        return self.wins + self.losses

    @property
    def win_rate(self) -> float:
        if self.games == 0:
            return 0.0
        return self.wins / self.games

    def apply(self, delta: PlayerDelta) -> None:
        self.points += delta.points
        self.wins += delta.wins
        self.losses += delta.losses

    def to_dict(self) -> Dict:
        return {
            "player": self.player,
            "wins": self.wins,
            "losses": self.losses,
            "points": self.points,
            "games": self.games,
            "win_rate": round(self.win_rate, 3),
        }


@dataclass
class PairEntry:
    pair: PairKey
    plays: int = 0
    wins: int = 0

    @property
    def win_rate(self) -> float:
        if self.plays == 0:
            return 0.0
        return self.wins / self.plays

    def apply(self, delta: PairDelta) -> None:
        self.plays += delta.plays
        self.wins += delta.wins

    def to_dict(self) -> Dict:
        return {
            "player_a": self.pair[0],
            "player_b": self.pair[1],
            "plays": self.plays,
            "wins": self.wins,
            "win_rate": round(self.win_rate, 3),
        }


def leaderboard_sort_key(entry: LeaderboardEntry) -> Tuple[int, int, str]:
    """Wins desc, points desc, identity asc."""
    return (-entry.wins, -entry.points, entry.player)


def compute_leaderboard(
    outcomes: Iterable[Outcome],
    known_players: Iterable[str] = ()
) -> List[LeaderboardEntry]:
    """
    Recompute a ranked leaderboard from scratch.

    Pure: folds every decided outcome through ``outcome_deltas``. Players in
    ``known_players`` or on any roster (decided or pending) are listed even
    with zero games.

    Args:
        outcomes: Outcomes in any order
        known_players: Identities that must appear (e.g. team members)

    Returns:
        Entries sorted by wins desc, points desc, identity asc
    """
    table: Dict[str, LeaderboardEntry] = {}

    def get_entry(player: str) -> LeaderboardEntry:
        if player not in table:
            table[player] = LeaderboardEntry(player)
        return table[player]

    for player in known_players:
        get_entry(normalize_player_id(player))

    for outcome in outcomes:
        for player in outcome.players:
            get_entry(player)
        if not outcome.is_decided:
            continue
        for player, delta in outcome_deltas(outcome).players.items():
            get_entry(player).apply(delta)

    return sorted(table.values(), key=leaderboard_sort_key)


def compute_pair_table(outcomes: Iterable[Outcome]) -> List[PairEntry]:
    """
    Recompute doubles pair plays/wins from decided outcomes.

    Returns:
        Entries sorted by wins desc, plays desc, pair asc
    """
    table: Dict[PairKey, PairEntry] = {}
    for outcome in outcomes:
        if not outcome.is_decided:
            continue
        for key, delta in outcome_deltas(outcome).pairs.items():
            table.setdefault(key, PairEntry(key)).apply(delta)

    return sorted(table.values(), key=lambda e: (-e.wins, -e.plays, e.pair))
