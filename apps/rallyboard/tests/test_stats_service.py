"""
Tests for the pure statistics engine.

Tests verify:
- Roster validation (singles/doubles shape, overlap, repeats)
- Decide/undecide preconditions
- Outcome deltas and their exact inverse
- Leaderboard and pair-table recomputation and ordering
"""

import itertools
import pytest
from rallyboard.database.models import Side
from rallyboard.services.stats_service import (
    AlreadyDecidedError,
    InvalidRosterError,
    NotDecidedError,
    Outcome,
    OutcomeDeltas,
    OutcomeError,
    PlayerDelta,
    compute_leaderboard,
    compute_pair_table,
    normalize_player_id,
    outcome_deltas,
    pair_key,
    reversal_deltas,
)
from rallyboard.utils.constants import LOSS_POINTS, WIN_POINTS


ALICE = "alice@x.com"
BOB = "bob@x.com"
CAROL = "carol@x.com"
DAVE = "dave@x.com"


def _sum_deltas(*all_deltas: OutcomeDeltas):
    """Fold deltas into plain counter dicts."""
    players = {}
    pairs = {}
    for deltas in all_deltas:
        for player, d in deltas.players.items():
            points, wins, losses = players.get(player, (0, 0, 0))
            players[player] = (points + d.points, wins + d.wins, losses + d.losses)
        for key, d in deltas.pairs.items():
            plays, wins = pairs.get(key, (0, 0))
            pairs[key] = (plays + d.plays, wins + d.wins)
    return players, pairs


# ============================================================================
# Roster validation
# ============================================================================

class TestRosterValidation:

    def test_singles_and_doubles_are_valid(self):
        assert not Outcome((ALICE,), (BOB,)).is_doubles
        assert Outcome((ALICE, CAROL), (BOB, DAVE)).is_doubles

    def test_size_mismatch_rejected(self):
        with pytest.raises(InvalidRosterError):
            Outcome((ALICE,), (BOB, CAROL))

    @pytest.mark.parametrize("side_a,side_b", [
        ((), (BOB,)),
        ((ALICE,), ()),
        ((), ()),
    ])
    def test_empty_roster_rejected(self, side_a, side_b):
        with pytest.raises(InvalidRosterError):
            Outcome(side_a, side_b)

    def test_oversized_roster_rejected(self):
        with pytest.raises(InvalidRosterError):
            Outcome((ALICE, BOB, CAROL), (DAVE, "eve@x.com", "finn@x.com"))

    def test_overlapping_rosters_rejected(self):
        with pytest.raises(InvalidRosterError, match="both sides"):
            Outcome((ALICE, CAROL), (BOB, ALICE))

    def test_overlap_detected_case_insensitively(self):
        with pytest.raises(InvalidRosterError):
            Outcome(("Alice@X.com",), (ALICE,))

    def test_repeated_player_on_one_side_rejected(self):
        with pytest.raises(InvalidRosterError):
            Outcome((ALICE, ALICE), (BOB, CAROL))

    def test_blank_identity_rejected(self):
        with pytest.raises(InvalidRosterError):
            Outcome(("  ",), (BOB,))

    def test_identities_are_normalized(self):
        outcome = Outcome((" Alice@X.com ",), ("BOB@x.com",))
        assert outcome.side_a == (ALICE,)
        assert outcome.side_b == (BOB,)
        assert normalize_player_id(" Carol@X.COM") == CAROL

    def test_roster_errors_are_value_errors(self):
        # Routes rely on this to map every outcome error to a client error
        assert issubclass(InvalidRosterError, OutcomeError)
        assert issubclass(OutcomeError, ValueError)


# ============================================================================
# Decide / undecide
# ============================================================================

class TestDecide:

    def test_decide_sets_winner(self):
        decided = Outcome((ALICE,), (BOB,)).decide(Side.B)
        assert decided.is_decided
        assert decided.winner is Side.B

    def test_decide_accepts_string_side(self):
        assert Outcome((ALICE,), (BOB,)).decide("A").winner is Side.A

    @pytest.mark.parametrize("second", [Side.A, Side.B])
    def test_second_decide_rejected(self, second):
        decided = Outcome((ALICE,), (BOB,)).decide(Side.A)
        with pytest.raises(AlreadyDecidedError):
            decided.decide(second)

    def test_undecide_pending_rejected(self):
        with pytest.raises(NotDecidedError):
            Outcome((ALICE,), (BOB,)).undecide()

    def test_undecide_clears_winner(self):
        outcome = Outcome((ALICE,), (BOB,), Side.A).undecide()
        assert outcome.winner is None
        # Can be decided again after undecide
        assert outcome.decide(Side.B).winner is Side.B

    def test_invalid_side_rejected(self):
        with pytest.raises(ValueError):
            Outcome((ALICE,), (BOB,)).decide("C")


# ============================================================================
# Deltas
# ============================================================================

class TestDeltas:

    def test_singles_win(self):
        deltas = outcome_deltas(Outcome((ALICE,), (BOB,)), Side.A)

        assert deltas.players[ALICE] == PlayerDelta(points=WIN_POINTS, wins=1, losses=0)
        assert deltas.players[BOB] == PlayerDelta(points=LOSS_POINTS, wins=0, losses=1)
        assert deltas.pairs == {}

    def test_scoring_constants(self):
        assert WIN_POINTS == 10
        assert LOSS_POINTS == 2

    def test_doubles_win(self):
        deltas = outcome_deltas(Outcome((ALICE, CAROL), (BOB, DAVE), Side.A))

        for player in (ALICE, CAROL):
            assert deltas.players[player] == PlayerDelta(10, 1, 0)
        for player in (BOB, DAVE):
            assert deltas.players[player] == PlayerDelta(2, 0, 1)
        assert deltas.pairs[(ALICE, CAROL)].plays == 1
        assert deltas.pairs[(ALICE, CAROL)].wins == 1
        assert deltas.pairs[(BOB, DAVE)].plays == 1
        assert deltas.pairs[(BOB, DAVE)].wins == 0

    def test_side_b_win(self):
        deltas = outcome_deltas(Outcome((ALICE, CAROL), (BOB, DAVE)), Side.B)
        assert deltas.players[BOB].wins == 1
        assert deltas.players[ALICE].losses == 1
        assert deltas.pairs[(BOB, DAVE)].wins == 1

    def test_pending_outcome_without_side_rejected(self):
        with pytest.raises(NotDecidedError):
            outcome_deltas(Outcome((ALICE,), (BOB,)))

    def test_pair_key_is_order_independent(self):
        assert pair_key(BOB, ALICE) == pair_key(ALICE, BOB) == (ALICE, BOB)

    def test_pair_symmetry(self):
        forward = outcome_deltas(Outcome((ALICE, BOB), (CAROL, DAVE)), Side.A)
        backward = outcome_deltas(Outcome((BOB, ALICE), (DAVE, CAROL)), Side.A)
        assert forward.pairs == backward.pairs
        assert list(forward.pairs) == [(ALICE, BOB), (CAROL, DAVE)]

    @pytest.mark.parametrize("rosters", [
        ((ALICE,), (BOB,)),
        ((ALICE, CAROL), (BOB, DAVE)),
        ((DAVE, BOB), (CAROL, ALICE)),
    ])
    @pytest.mark.parametrize("side", [Side.A, Side.B])
    def test_reversal_is_exact_inverse(self, rosters, side):
        decided = Outcome(*rosters).decide(side)
        players, pairs = _sum_deltas(outcome_deltas(decided), reversal_deltas(decided))

        assert all(counters == (0, 0, 0) for counters in players.values())
        assert all(counters == (0, 0) for counters in pairs.values())
        assert set(players) == set(decided.players)

    def test_reversal_of_pending_rejected(self):
        with pytest.raises(NotDecidedError):
            reversal_deltas(Outcome((ALICE,), (BOB,)))


# ============================================================================
# Leaderboard
# ============================================================================

class TestLeaderboard:

    def test_empty(self):
        assert compute_leaderboard([]) == []

    def test_known_players_appear_with_zero_games(self):
        board = compute_leaderboard([], known_players=[CAROL, "Alice@X.com"])
        assert [e.player for e in board] == [ALICE, CAROL]
        assert all(e.games == 0 and e.points == 0 for e in board)

    def test_pending_games_list_players_without_stats(self):
        board = compute_leaderboard([Outcome((ALICE,), (BOB,))])
        assert {e.player for e in board} == {ALICE, BOB}
        assert all(e.wins == 0 and e.losses == 0 and e.points == 0 for e in board)

    def test_folds_decided_outcomes(self):
        outcomes = [
            Outcome((ALICE,), (BOB,), Side.A),
            Outcome((ALICE,), (BOB,), Side.B),
            Outcome((ALICE, CAROL), (BOB, DAVE), Side.A),
        ]
        by_player = {e.player: e for e in compute_leaderboard(outcomes)}

        assert (by_player[ALICE].wins, by_player[ALICE].losses, by_player[ALICE].points) == (2, 1, 22)
        assert (by_player[BOB].wins, by_player[BOB].losses, by_player[BOB].points) == (1, 2, 14)
        assert (by_player[CAROL].wins, by_player[CAROL].points) == (1, 10)
        assert (by_player[DAVE].losses, by_player[DAVE].points) == (1, 2)

    def test_sorted_by_wins_then_points_then_identity(self):
        outcomes = [
            # carol: 1 win, 1 loss = 12 points
            Outcome((CAROL,), (DAVE,), Side.A),
            Outcome((CAROL,), (DAVE,), Side.B),
            # alice: 1 win = 10 points
            Outcome((ALICE,), ("zed@x.com",), Side.A),
            # bob: 1 win = 10 points
            Outcome((BOB,), ("zed@x.com",), Side.A),
        ]
        board = [e.player for e in compute_leaderboard(outcomes)]

        # carol and dave tie on wins and points; identity breaks the tie
        assert board[:4] == [CAROL, DAVE, ALICE, BOB]
        assert board[-1] == "zed@x.com"

    def test_deterministic_regardless_of_input_order(self):
        outcomes = [
            Outcome((ALICE, CAROL), (BOB, DAVE), Side.A),
            Outcome((ALICE,), (BOB,), Side.B),
            Outcome((CAROL,), (DAVE,), Side.A),
            Outcome((BOB,), (CAROL,)),
        ]
        expected = [e.to_dict() for e in compute_leaderboard(outcomes)]
        for perm in itertools.permutations(outcomes):
            assert [e.to_dict() for e in compute_leaderboard(list(perm))] == expected

    def test_entry_dict(self):
        entry = compute_leaderboard([
            Outcome((ALICE,), (BOB,), Side.A),
            Outcome((ALICE,), (BOB,), Side.A),
            Outcome((ALICE,), (BOB,), Side.B),
        ])[0]
        assert entry.to_dict() == {
            "player": ALICE,
            "wins": 2,
            "losses": 1,
            "points": 22,
            "games": 3,
            "win_rate": 0.667,
        }


class TestPairTable:

    def test_singles_produce_no_pairs(self):
        assert compute_pair_table([Outcome((ALICE,), (BOB,), Side.A)]) == []

    def test_pending_games_ignored(self):
        assert compute_pair_table([Outcome((ALICE, CAROL), (BOB, DAVE))]) == []

    def test_pairs_accumulate_across_sides(self):
        outcomes = [
            Outcome((ALICE, CAROL), (BOB, DAVE), Side.A),
            Outcome((BOB, DAVE), (CAROL, ALICE), Side.A),
            Outcome((CAROL, ALICE), (DAVE, BOB), Side.A),
        ]
        table = {e.pair: e for e in compute_pair_table(outcomes)}

        assert (table[(ALICE, CAROL)].plays, table[(ALICE, CAROL)].wins) == (3, 2)
        assert (table[(BOB, DAVE)].plays, table[(BOB, DAVE)].wins) == (3, 1)

    def test_sorted_best_pair_first(self):
        outcomes = [
            Outcome((BOB, DAVE), (ALICE, CAROL), Side.A),
        ]
        pairs = [e.to_dict() for e in compute_pair_table(outcomes)]
        assert pairs[0] == {"player_a": BOB, "player_b": DAVE, "plays": 1, "wins": 1, "win_rate": 1.0}
        assert pairs[1]["player_a"] == ALICE
        assert pairs[1]["win_rate"] == 0.0
