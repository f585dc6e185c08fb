"""
Data service layer for database operations.
Handles CRUD for teams, sessions and games, and applies outcome deltas to the
persisted player and pair counters.
"""

import logging
from datetime import date as date_type
from typing import Dict, Iterable, List, Optional, Sequence
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, delete, func
from sqlalchemy.orm import selectinload
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from rallyboard.database.models import (
    Game, MemberRole, PairStats, PlayerStats, Session, Side, Team, TeamMember,
    Tournament, User,
)
from rallyboard.services import package_service
from rallyboard.services.stats_service import (
    AlreadyDecidedError, NotDecidedError, Outcome, OutcomeDeltas, OutcomeError,
    compute_leaderboard, compute_pair_table, outcome_deltas, reversal_deltas,
)
from rallyboard.services.user_service import email_local_part, normalize_email
from rallyboard.utils.datetime_utils import isoformat_or_none, utcnow
from rallyboard.utils.slugify import generate_slug, slugify

logger = logging.getLogger(__name__)


class DuplicateError(ValueError):
    """A unique resource (slug, membership) already exists."""


#
# Helper functions
#

def _insert_for(session: AsyncSession):
    """Dialect-specific insert construct (both support ON CONFLICT upserts)."""
    if session.get_bind().dialect.name == "sqlite":
        return sqlite_insert
    return pg_insert


def game_to_outcome(game: Game) -> Outcome:
    """Build a validated Outcome from a stored game. Raises InvalidRosterError."""
    return Outcome(tuple(game.team_a_players), tuple(game.team_b_players), game.winner)


def _outcomes_from_games(games: Iterable[Game]) -> List[Outcome]:
    """Convert games for read views, skipping rows whose stored rosters are invalid."""
    outcomes = []
    for game in games:
        try:
            outcomes.append(game_to_outcome(game))
        except OutcomeError as e:
            logger.warning(f"Skipping game {game.id} with invalid roster: {e}")
    return outcomes


def _display_names(members: Sequence[TeamMember]) -> Dict[str, str]:
    """Map member email -> display name (member name, then user name, then email prefix)."""
    names = {}
    for member in members:
        user_name = member.user.name if member.user else None
        names[member.email] = member.display_name or user_name or email_local_part(member.email)
    return names


def _leaderboard_dicts(outcomes: List[Outcome], names: Dict[str, str], known_players=()) -> List[Dict]:
    rows = []
    for rank, entry in enumerate(compute_leaderboard(outcomes, known_players), 1):
        row = entry.to_dict()
        row["rank"] = rank
        row["name"] = names.get(entry.player) or email_local_part(entry.player)
        rows.append(row)
    return rows


def _team_to_dict(team: Team) -> Dict:
    return {
        "id": team.id,
        "slug": team.slug,
        "name": team.name,
        "owner_id": team.owner_id,
        "created_at": isoformat_or_none(team.created_at),
    }


def _member_to_dict(member: TeamMember, names: Optional[Dict[str, str]] = None) -> Dict:
    return {
        "id": member.id,
        "team_id": member.team_id,
        "email": member.email,
        "user_id": member.user_id,
        "display_name": names.get(member.email) if names else member.display_name,
        "role": member.role.value if member.role else None,
    }


def _session_to_dict(session_obj: Session) -> Dict:
    return {
        "id": session_obj.id,
        "slug": session_obj.slug,
        "team_id": session_obj.team_id,
        "name": session_obj.name,
        "date": isoformat_or_none(session_obj.date),
        "created_at": isoformat_or_none(session_obj.created_at),
    }


def _game_to_dict(game: Game) -> Dict:
    return {
        "id": game.id,
        "slug": game.slug,
        "session_id": game.session_id,
        "team_a_players": list(game.team_a_players),
        "team_b_players": list(game.team_b_players),
        "winner": game.winner.value if game.winner else None,
        "created_at": isoformat_or_none(game.created_at),
        "decided_at": isoformat_or_none(game.decided_at),
    }


async def _slug_exists(session: AsyncSession, model, slug: str) -> bool:
    result = await session.execute(select(model.id).where(model.slug == slug).limit(1))
    return result.scalar_one_or_none() is not None


#
# Counter persistence
#

async def _apply_deltas(session: AsyncSession, team_id: int, deltas: OutcomeDeltas) -> None:
    """
    Upsert player and pair counters by the given deltas.

    Does not commit; must run inside the caller's transaction. Rows are
    touched in sorted key order so concurrent transactions lock them in the
    same order.
    """
    insert = _insert_for(session)

    for email, delta in sorted(deltas.players.items()):
        stmt = insert(PlayerStats).values(
            email=email, points=delta.points, wins=delta.wins, losses=delta.losses
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[PlayerStats.email],
            set_={
                "points": PlayerStats.points + stmt.excluded.points,
                "wins": PlayerStats.wins + stmt.excluded.wins,
                "losses": PlayerStats.losses + stmt.excluded.losses,
                "updated_at": func.now(),
            },
        )
        await session.execute(stmt)

    for (player_a, player_b), delta in sorted(deltas.pairs.items()):
        stmt = insert(PairStats).values(
            team_id=team_id, player_a=player_a, player_b=player_b,
            plays=delta.plays, wins=delta.wins,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[PairStats.team_id, PairStats.player_a, PairStats.player_b],
            set_={
                "plays": PairStats.plays + stmt.excluded.plays,
                "wins": PairStats.wins + stmt.excluded.wins,
            },
        )
        await session.execute(stmt)


async def _load_game_with_team(session: AsyncSession, game_id: int):
    """Return (game, team_id) or raise ValueError."""
    result = await session.execute(
        select(Game, Session.team_id)
        .join(Session, Game.session_id == Session.id)
        .where(Game.id == game_id)
    )
    row = result.one_or_none()
    if row is None:
        raise ValueError("Game not found.")
    return row[0], row[1]


async def record_outcome(session: AsyncSession, game_id: int, side: Side) -> Dict:
    """
    Decide a game and apply its stat deltas atomically.

    The winner flag is set with a conditional UPDATE (winner IS NULL), so of
    two concurrent calls on the same game only one can succeed.

    Args:
        session: Database session
        game_id: Game to decide
        side: Winning side ("A" or "B")

    Returns:
        Updated game dictionary

    Raises:
        InvalidRosterError: If the stored rosters are invalid (nothing is written)
        AlreadyDecidedError: If the game already has a winner
    """
    side = Side(side)
    game, team_id = await _load_game_with_team(session, game_id)
    outcome = game_to_outcome(game).decide(side)
    deltas = outcome_deltas(outcome)

    try:
        result = await session.execute(
            update(Game)
            .where(Game.id == game_id, Game.winner.is_(None))
            .values(winner=side, decided_at=utcnow())
        )
        if result.rowcount != 1:
            raise AlreadyDecidedError("Winner already selected.")

        await _apply_deltas(session, team_id, deltas)
        await session.commit()
    except Exception:
        await session.rollback()
        raise

    logger.info(f"Game {game_id} decided for side {side.value}")
    await session.refresh(game)
    return _game_to_dict(game)


async def _reverse_in_transaction(session: AsyncSession, game: Game, team_id: int) -> None:
    """Subtract a decided game's deltas and clear its winner. Does not commit."""
    outcome = game_to_outcome(game)
    deltas = reversal_deltas(outcome)

    result = await session.execute(
        update(Game)
        .where(Game.id == game.id, Game.winner == outcome.winner)
        .values(winner=None, decided_at=None)
    )
    if result.rowcount != 1:
        raise NotDecidedError("Game has no winner to reverse.")

    await _apply_deltas(session, team_id, deltas)


async def reverse_outcome(session: AsyncSession, game_id: int) -> Dict:
    """
    Undo a recorded winner, restoring every touched counter exactly.

    Returns:
        Updated game dictionary

    Raises:
        NotDecidedError: If the game has no winner
    """
    game, team_id = await _load_game_with_team(session, game_id)
    if game.winner is None:
        raise NotDecidedError("Game has no winner to reverse.")

    try:
        await _reverse_in_transaction(session, game, team_id)
        await session.commit()
    except Exception:
        await session.rollback()
        raise

    logger.info(f"Game {game_id} outcome reversed")
    await session.refresh(game)
    return _game_to_dict(game)


async def delete_game(session: AsyncSession, game_id: int) -> bool:
    """
    Delete a game, reversing its stats first if it was decided.

    Reversal and deletion commit together.

    Returns:
        True if the game was deleted
    """
    game, team_id = await _load_game_with_team(session, game_id)

    try:
        if game.winner is not None:
            await _reverse_in_transaction(session, game, team_id)
        result = await session.execute(delete(Game).where(Game.id == game_id))
        await session.commit()
    except Exception:
        await session.rollback()
        raise

    logger.info(f"Game {game_id} deleted")
    return result.rowcount > 0


async def get_player_stats(session: AsyncSession, email: str) -> Dict:
    """Global counters for a player; zeros if the player has no decided games."""
    email = normalize_email(email)
    result = await session.execute(
        select(PlayerStats.points, PlayerStats.wins, PlayerStats.losses)
        .where(PlayerStats.email == email)
    )
    points, wins, losses = result.one_or_none() or (0, 0, 0)
    return {
        "email": email,
        "points": points,
        "wins": wins,
        "losses": losses,
        "games": wins + losses,
        "win_rate": round(wins / (wins + losses), 3) if wins + losses else 0.0,
    }


async def get_pair_stats(session: AsyncSession, team_id: int) -> List[Dict]:
    """Persisted pair counters for a team, best pairs first."""
    result = await session.execute(
        select(PairStats.player_a, PairStats.player_b, PairStats.plays, PairStats.wins)
        .where(PairStats.team_id == team_id, PairStats.plays > 0)
        .order_by(PairStats.wins.desc(), PairStats.plays.desc(), PairStats.player_a, PairStats.player_b)
    )
    return [
        {
            "player_a": player_a,
            "player_b": player_b,
            "plays": plays,
            "wins": wins,
            "win_rate": round(wins / plays, 3) if plays else 0.0,
        }
        for player_a, player_b, plays, wins in result.all()
    ]


#
# Teams
#

async def get_team_by_slug(session: AsyncSession, slug: str) -> Optional[Team]:
    """Load a team with its members (and their users) and sessions."""
    result = await session.execute(
        select(Team)
        .where(Team.slug == slug)
        .options(
            selectinload(Team.members).selectinload(TeamMember.user),
            selectinload(Team.sessions).selectinload(Session.games),
        )
    )
    return result.scalar_one_or_none()


async def create_team(session: AsyncSession, owner_id: int, name: str) -> Dict:
    """
    Create a team owned by ``owner_id`` and count it against their quota.

    The owner is added as the OWNER member so they can appear on rosters.

    Raises:
        QuotaError: If the owner's package does not allow another team
        DuplicateError: If a team with the same slug exists
        ValueError: If the name has no slug-able characters
    """
    name = name.strip()
    slug = slugify(name)
    if not slug:
        raise ValueError("Team name must contain letters or digits.")

    try:
        result = await session.execute(select(User).where(User.id == owner_id).with_for_update())
        owner = result.scalar_one_or_none()
        if not owner:
            raise ValueError("User not found.")

        package_service.check_can_create_team(owner)

        if await _slug_exists(session, Team, slug):
            raise DuplicateError("A team with this name already exists.")

        team = Team(name=name, slug=slug, owner_id=owner.id)
        session.add(team)
        await session.flush()

        session.add(TeamMember(
            team_id=team.id,
            email=owner.email,
            user_id=owner.id,
            display_name=owner.name,
            role=MemberRole.OWNER,
        ))
        await session.execute(
            update(User).where(User.id == owner.id).values(team_count=User.team_count + 1)
        )
        await session.commit()
    except Exception:
        await session.rollback()
        raise

    await session.refresh(team)
    logger.info(f"Team {team.slug} created by user {owner_id}")
    return _team_to_dict(team)


async def add_team_member(
    session: AsyncSession,
    team_id: int,
    email: str,
    display_name: Optional[str] = None
) -> Dict:
    """
    Add a member by email, linking an existing user when there is one.

    Raises:
        DuplicateError: If the email is already a member of the team
    """
    email = normalize_email(email)
    display_name = display_name.strip() if display_name and display_name.strip() else None

    existing = await session.execute(
        select(TeamMember.id).where(TeamMember.team_id == team_id, TeamMember.email == email)
    )
    if existing.scalar_one_or_none() is not None:
        raise DuplicateError("Member already exists in this team.")

    result = await session.execute(select(User).where(User.email == email))
    user = result.scalar_one_or_none()

    member = TeamMember(
        team_id=team_id,
        email=email,
        user_id=user.id if user else None,
        display_name=display_name,
        role=MemberRole.MEMBER,
    )
    session.add(member)
    if user and display_name and not user.name:
        user.name = display_name
    await session.commit()
    await session.refresh(member)
    return _member_to_dict(member)


async def remove_team_member(session: AsyncSession, team_id: int, member_id: int) -> bool:
    """
    Remove a member from a team.

    Returns:
        True if removed, False if no such member

    Raises:
        ValueError: If the member is the team owner
    """
    result = await session.execute(
        select(TeamMember).where(TeamMember.id == member_id, TeamMember.team_id == team_id)
    )
    member = result.scalar_one_or_none()
    if not member:
        return False
    if member.role == MemberRole.OWNER:
        raise ValueError("The team owner cannot be removed.")

    await session.delete(member)
    await session.commit()
    return True


async def get_team_detail(session: AsyncSession, team: Team) -> Dict:
    """
    Team page data: members, sessions (newest first) and the team leaderboard.

    Every member appears on the leaderboard, including those with no games.
    """
    names = _display_names(team.members)
    sessions = sorted(team.sessions, key=lambda s: (s.date, s.id), reverse=True)
    games = [game for s in sessions for game in s.games]

    session_rows = []
    for session_obj in sessions:
        row = _session_to_dict(session_obj)
        row["game_count"] = len(session_obj.games)
        row["decided_count"] = sum(1 for g in session_obj.games if g.winner is not None)
        session_rows.append(row)

    return {
        **_team_to_dict(team),
        "members": [_member_to_dict(m, names) for m in team.members],
        "sessions": session_rows,
        "leaderboard": _leaderboard_dicts(
            _outcomes_from_games(games), names, known_players=[m.email for m in team.members]
        ),
    }


async def get_public_team_stats(session: AsyncSession, slug: str) -> Optional[Dict]:
    """Read-only team statistics: leaderboard, persisted pair stats and totals."""
    team = await get_team_by_slug(session, slug)
    if not team:
        return None

    names = _display_names(team.members)
    games = [game for s in team.sessions for game in s.games]
    pairs = await get_pair_stats(session, team.id)
    for pair in pairs:
        pair["player_a_name"] = names.get(pair["player_a"]) or email_local_part(pair["player_a"])
        pair["player_b_name"] = names.get(pair["player_b"]) or email_local_part(pair["player_b"])

    return {
        "team": {"slug": team.slug, "name": team.name, "created_at": isoformat_or_none(team.created_at)},
        "member_count": len(team.members),
        "session_count": len(team.sessions),
        "game_count": len(games),
        "decided_game_count": sum(1 for g in games if g.winner is not None),
        "leaderboard": _leaderboard_dicts(
            _outcomes_from_games(games), names, known_players=[m.email for m in team.members]
        ),
        "pairs": pairs,
    }


async def get_dashboard(session: AsyncSession, user_id: int) -> Optional[Dict]:
    """
    Dashboard for a user: profile, quotas, owned + member teams, tournaments, stats.
    """
    result = await session.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    if not user:
        return None

    owned = await session.execute(select(Team).where(Team.owner_id == user_id).order_by(Team.created_at))
    teams = {team.id: team for team in owned.scalars().all()}
    member_of = await session.execute(
        select(Team)
        .join(TeamMember, TeamMember.team_id == Team.id)
        .where(TeamMember.user_id == user_id)
        .order_by(Team.created_at)
    )
    for team in member_of.scalars().all():
        teams.setdefault(team.id, team)

    tournaments = await session.execute(
        select(Tournament).where(Tournament.owner_id == user_id).order_by(Tournament.created_at)
    )

    return {
        "user": {
            "id": user.id,
            "email": user.email,
            "name": user.name,
            "image_url": user.image_url,
        },
        "package": {
            "package_type": user.package_type.value,
            "team_quota": user.team_quota,
            "tournament_quota": user.tournament_quota,
            "team_count": user.team_count,
            "tournament_count": user.tournament_count,
        },
        "teams": [
            {**_team_to_dict(team), "is_owner": team.owner_id == user_id}
            for team in teams.values()
        ],
        "tournaments": [_tournament_to_dict(t) for t in tournaments.scalars().all()],
        "stats": await get_player_stats(session, user.email),
    }


#
# Tournaments
#

def _tournament_to_dict(tournament: Tournament) -> Dict:
    return {
        "id": tournament.id,
        "slug": tournament.slug,
        "name": tournament.name,
        "owner_id": tournament.owner_id,
        "banner_url": tournament.banner_url,
        "min_games_per_player": tournament.min_games_per_player,
        "created_at": isoformat_or_none(tournament.created_at),
    }


async def create_tournament(
    session: AsyncSession,
    owner_id: int,
    name: str,
    min_games_per_player: int,
    banner_url: Optional[str] = None
) -> Dict:
    """
    Create a tournament and count it against the owner's quota.

    Raises:
        QuotaError: If the owner's package does not allow another tournament
        DuplicateError: If a tournament with the same slug exists
    """
    name = name.strip()
    slug = slugify(name)
    if not slug:
        raise ValueError("Tournament name must contain letters or digits.")
    if min_games_per_player < 0:
        raise ValueError("Minimum games per player cannot be negative.")

    try:
        result = await session.execute(select(User).where(User.id == owner_id).with_for_update())
        owner = result.scalar_one_or_none()
        if not owner:
            raise ValueError("User not found.")

        package_service.check_can_create_tournament(owner)

        if await _slug_exists(session, Tournament, slug):
            raise DuplicateError("A tournament with this name already exists.")

        tournament = Tournament(
            name=name,
            slug=slug,
            owner_id=owner.id,
            banner_url=banner_url or None,
            min_games_per_player=min_games_per_player,
        )
        session.add(tournament)
        await session.execute(
            update(User).where(User.id == owner.id).values(tournament_count=User.tournament_count + 1)
        )
        await session.commit()
    except Exception:
        await session.rollback()
        raise

    await session.refresh(tournament)
    logger.info(f"Tournament {tournament.slug} created by user {owner_id}")
    return _tournament_to_dict(tournament)


#
# Sessions
#

async def get_session_by_slug(session: AsyncSession, slug: str) -> Optional[Session]:
    """Load a play session with its team (members, users) and games."""
    result = await session.execute(
        select(Session)
        .where(Session.slug == slug)
        .options(
            selectinload(Session.team).selectinload(Team.members).selectinload(TeamMember.user),
            selectinload(Session.games),
        )
    )
    return result.scalar_one_or_none()


async def create_session(
    session: AsyncSession,
    team: Team,
    date: date_type,
    name: Optional[str] = None
) -> Dict:
    """
    Create a play session for a team.

    Raises:
        DuplicateError: If the generated slug collides
    """
    name = name.strip() if name and name.strip() else None
    base = f"{team.slug}-{date.isoformat()}" + (f"-{name}" if name else "")
    slug = generate_slug(base)
    if await _slug_exists(session, Session, slug):
        raise DuplicateError("A session with a similar identifier already exists.")

    session_obj = Session(team_id=team.id, slug=slug, name=name, date=date)
    session.add(session_obj)
    await session.commit()
    await session.refresh(session_obj)
    return _session_to_dict(session_obj)


async def get_session_detail(session: AsyncSession, session_obj: Session) -> Dict:
    """
    Session page data: games newest first, session leaderboard and pair table.

    Only players who appear in this session's games are listed.
    """
    names = _display_names(session_obj.team.members)
    games = sorted(session_obj.games, key=lambda g: g.id, reverse=True)
    outcomes = _outcomes_from_games(games)

    return {
        **_session_to_dict(session_obj),
        "team": {"slug": session_obj.team.slug, "name": session_obj.team.name},
        "members": [
            {"email": m.email, "name": names[m.email]} for m in session_obj.team.members
        ],
        "games": [_game_to_dict(g) for g in games],
        "leaderboard": _leaderboard_dicts(outcomes, names),
        "pairs": [entry.to_dict() for entry in compute_pair_table(outcomes)],
    }


#
# Games
#

async def get_game_by_slug(session: AsyncSession, slug: str) -> Optional[Game]:
    """Load a game with its session and team."""
    result = await session.execute(
        select(Game)
        .where(Game.slug == slug)
        .options(selectinload(Game.session).selectinload(Session.team))
    )
    return result.scalar_one_or_none()


async def create_game(
    session: AsyncSession,
    session_obj: Session,
    team_a_players: Sequence[str],
    team_b_players: Sequence[str]
) -> Dict:
    """
    Create a pending game in a session.

    Raises:
        InvalidRosterError: If rosters are not 1v1 / 2v2, repeat or overlap
        ValueError: If a roster player is not a team member
    """
    outcome = Outcome(tuple(team_a_players), tuple(team_b_players))

    result = await session.execute(
        select(TeamMember.email).where(TeamMember.team_id == session_obj.team_id)
    )
    member_emails = set(result.scalars().all())
    outsiders = sorted(p for p in outcome.players if p not in member_emails)
    if outsiders:
        raise ValueError(f"Players are not members of this team: {', '.join(outsiders)}")

    game = Game(
        slug=generate_slug(f"{session_obj.slug}-game"),
        session_id=session_obj.id,
        team_a_players=list(outcome.side_a),
        team_b_players=list(outcome.side_b),
    )
    session.add(game)
    await session.commit()
    await session.refresh(game)
    return _game_to_dict(game)
