"""
SQLAlchemy ORM models for the badminton team and statistics system.
"""

import enum
from sqlalchemy import (
    Column,
    Integer,
    String,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    JSON,
    UniqueConstraint,
    CheckConstraint,
    Index,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from rallyboard.database.db import Base
from rallyboard.utils.constants import DEFAULT_TEAM_QUOTA, DEFAULT_TOURNAMENT_QUOTA


class Side(str, enum.Enum):
    """Side of a game roster."""

    A = "A"
    B = "B"

    @property
    def opponent(self) -> "Side":
        return Side.B if self is Side.A else Side.A


class PackageType(str, enum.Enum):
    """Subscription package enum."""

    FREE = "FREE"
    TEAM_PACKAGE = "TEAM_PACKAGE"
    TOURNAMENT_PACKAGE = "TOURNAMENT_PACKAGE"
    PRO_PACKAGE = "PRO_PACKAGE"


class MemberRole(str, enum.Enum):
    """Team member role enum."""

    OWNER = "OWNER"
    MEMBER = "MEMBER"


class User(Base):
    """User accounts linked to the external identity provider."""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    external_id = Column(String, nullable=True, unique=True)  # Identity provider subject; NULL for guests
    email = Column(String, nullable=False, unique=True)  # Always lowercase
    name = Column(String, nullable=True)
    image_url = Column(String, nullable=True)
    package_type = Column(Enum(PackageType), nullable=False, default=PackageType.FREE)
    team_quota = Column(Integer, nullable=False, default=DEFAULT_TEAM_QUOTA)
    tournament_quota = Column(Integer, nullable=False, default=DEFAULT_TOURNAMENT_QUOTA)
    team_count = Column(Integer, nullable=False, default=0)
    tournament_count = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relationships
    teams_owned = relationship("Team", back_populates="owner")
    memberships = relationship("TeamMember", back_populates="user")
    tournaments_owned = relationship("Tournament", back_populates="owner")

    __table_args__ = (Index("idx_users_email", "email"),)


class PlayerStats(Base):
    """Global cumulative counters per player identity (email)."""

    __tablename__ = "player_stats"

    email = Column(String, primary_key=True)
    points = Column(Integer, nullable=False, default=0)
    wins = Column(Integer, nullable=False, default=0)
    losses = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class Team(Base):
    """Badminton teams."""

    __tablename__ = "teams"

    id = Column(Integer, primary_key=True, autoincrement=True)
    slug = Column(String, nullable=False, unique=True)
    name = Column(String, nullable=False)
    owner_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    owner = relationship("User", back_populates="teams_owned")
    members = relationship("TeamMember", back_populates="team", cascade="all, delete-orphan")
    sessions = relationship("Session", back_populates="team", cascade="all, delete-orphan")
    pair_stats = relationship("PairStats", back_populates="team", cascade="all, delete-orphan")


class TeamMember(Base):
    """Team roster entries. Members are keyed by email and linked to users lazily."""

    __tablename__ = "team_members"

    id = Column(Integer, primary_key=True, autoincrement=True)
    team_id = Column(Integer, ForeignKey("teams.id", ondelete="CASCADE"), nullable=False)
    email = Column(String, nullable=False)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    display_name = Column(String, nullable=True)
    role = Column(Enum(MemberRole), nullable=False, default=MemberRole.MEMBER)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    team = relationship("Team", back_populates="members")
    user = relationship("User", back_populates="memberships")

    __table_args__ = (
        UniqueConstraint("team_id", "email", name="uq_team_members_team_email"),
        Index("idx_team_members_email", "email"),
    )


class Tournament(Base):
    """Tournaments."""

    __tablename__ = "tournaments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    slug = Column(String, nullable=False, unique=True)
    name = Column(String, nullable=False)
    owner_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    banner_url = Column(String, nullable=True)
    min_games_per_player = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    owner = relationship("User", back_populates="tournaments_owned")


class Session(Base):
    """Team play sessions (a dated set of games)."""

    __tablename__ = "sessions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    slug = Column(String, nullable=False, unique=True)
    team_id = Column(Integer, ForeignKey("teams.id", ondelete="CASCADE"), nullable=False)
    name = Column(String, nullable=True)
    date = Column(Date, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    team = relationship("Team", back_populates="sessions")
    games = relationship("Game", back_populates="session", cascade="all, delete-orphan")

    __table_args__ = (Index("idx_sessions_team_date", "team_id", "date"),)


class Game(Base):
    """A single game between two rosters of player emails, optionally decided."""

    __tablename__ = "games"

    id = Column(Integer, primary_key=True, autoincrement=True)
    slug = Column(String, nullable=False, unique=True)
    session_id = Column(Integer, ForeignKey("sessions.id", ondelete="CASCADE"), nullable=False)
    team_a_players = Column(JSON, nullable=False)  # List of emails
    team_b_players = Column(JSON, nullable=False)  # List of emails
    winner = Column(Enum(Side), nullable=True)  # NULL = pending
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    decided_at = Column(DateTime(timezone=True), nullable=True)

    # Relationships
    session = relationship("Session", back_populates="games")

    __table_args__ = (Index("idx_games_session_id", "session_id"),)


class PairStats(Base):
    """Doubles pair counters per team. player_a < player_b lexicographically."""

    __tablename__ = "pair_stats"

    id = Column(Integer, primary_key=True, autoincrement=True)
    team_id = Column(Integer, ForeignKey("teams.id", ondelete="CASCADE"), nullable=False)
    player_a = Column(String, nullable=False)
    player_b = Column(String, nullable=False)
    plays = Column(Integer, nullable=False, default=0)
    wins = Column(Integer, nullable=False, default=0)

    # Relationships
    team = relationship("Team", back_populates="pair_stats")

    __table_args__ = (
        UniqueConstraint("team_id", "player_a", "player_b", name="uq_pair_stats_team_pair"),
        CheckConstraint("player_a < player_b", name="ck_pair_stats_ordered"),
    )
