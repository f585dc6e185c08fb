"""
Pydantic models for API request/response validation.
"""

from datetime import date as date_type
from typing import Optional, List, Literal
from pydantic import BaseModel, Field, field_validator
from rallyboard.database.models import PackageType, Side
from rallyboard.utils.datetime_utils import parse_session_date


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    message: str


class CreateTeamRequest(BaseModel):
    """Request to create a team."""

    name: str = Field(..., min_length=3, description="Team name must be at least 3 characters.")

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        v = v.strip()
        if len(v) < 3:
            raise ValueError("Team name must be at least 3 characters.")
        return v


class CreateTournamentRequest(BaseModel):
    """Request to create a tournament."""

    name: str = Field(..., min_length=3)
    min_games_per_player: int = Field(0, ge=0)
    banner_url: Optional[str] = None

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        v = v.strip()
        if len(v) < 3:
            raise ValueError("Tournament name must be at least 3 characters.")
        return v

    @field_validator("banner_url")
    @classmethod
    def validate_banner_url(cls, v: Optional[str]) -> Optional[str]:
        if v is None or not v.strip():
            return None
        v = v.strip()
        if not v.startswith(("http://", "https://")) or " " in v or len(v) < 11:
            raise ValueError("Invalid URL.")
        return v


class AddMemberRequest(BaseModel):
    """Request to add a member to a team by email."""

    email: str = Field(..., min_length=3, max_length=320)
    display_name: Optional[str] = Field(None, max_length=100)

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        v = v.strip().lower()
        local, _, domain = v.partition("@")
        if not local or "." not in domain:
            raise ValueError("Invalid email address.")
        return v


class CreateSessionRequest(BaseModel):
    """Request to create a play session. Dates may be ISO or MM/DD/YYYY."""

    date: date_type
    name: Optional[str] = Field(None, max_length=100)

    @field_validator("date", mode="before")
    @classmethod
    def parse_date(cls, v):
        return parse_session_date(v)


class CreateGameRequest(BaseModel):
    """Request to create a game. Each roster is a list of member emails."""

    team_a_players: List[str] = Field(..., min_length=1, max_length=2)
    team_b_players: List[str] = Field(..., min_length=1, max_length=2)


class SetWinnerRequest(BaseModel):
    """Request to record the winning side of a game."""

    winner: Side


class UpdatePackageRequest(BaseModel):
    """Request to switch to a package."""

    package_type: PackageType


class UpgradePackageRequest(BaseModel):
    """Request to upgrade quotas by one slot."""

    type: Literal["TEAM", "TOURNAMENT"]


class IdentityUserData(BaseModel):
    """User payload of an identity provider webhook."""

    id: Optional[str] = None
    full_name: Optional[str] = None
    image_url: Optional[str] = None


class IdentityWebhookEvent(BaseModel):
    """Identity provider webhook event."""

    type: str
    data: Optional[IdentityUserData] = None
