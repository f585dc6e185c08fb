"""
Identity provider token verification.

Authentication itself is handled by the external identity provider; this
module only verifies the signed token it issues and extracts the principal.
"""

import os
import logging
from dataclasses import dataclass
from typing import Optional
from jose import jwt, JWTError

logger = logging.getLogger(__name__)

IDENTITY_JWT_KEY = os.getenv("IDENTITY_JWT_KEY", "")
IDENTITY_JWT_ALGORITHMS = [
    a.strip() for a in os.getenv("IDENTITY_JWT_ALGORITHMS", "RS256").split(",") if a.strip()
]
IDENTITY_JWT_ISSUER = os.getenv("IDENTITY_JWT_ISSUER") or None
IDENTITY_JWT_AUDIENCE = os.getenv("IDENTITY_JWT_AUDIENCE") or None


@dataclass(frozen=True)
class Identity:
    """Authenticated principal supplied by the identity provider."""

    external_id: str
    email: Optional[str]
    name: Optional[str] = None
    image_url: Optional[str] = None


def verify_token(token: str) -> Optional[dict]:
    """
    Verify an identity provider JWT.

    Returns:
        Token claims, or None if the token is invalid or verification is not configured
    """
    if not IDENTITY_JWT_KEY:
        logger.error("IDENTITY_JWT_KEY is not configured; rejecting token")
        return None
    try:
        return jwt.decode(
            token,
            IDENTITY_JWT_KEY,
            algorithms=IDENTITY_JWT_ALGORITHMS,
            issuer=IDENTITY_JWT_ISSUER,
            audience=IDENTITY_JWT_AUDIENCE,
            options={"verify_aud": IDENTITY_JWT_AUDIENCE is not None},
        )
    except JWTError as e:
        logger.debug(f"Token verification failed: {e}")
        return None


def identity_from_claims(claims: dict) -> Optional[Identity]:
    """Build an Identity from token claims. Returns None without a subject."""
    subject = claims.get("sub")
    if not subject:
        return None
    email = claims.get("email")
    return Identity(
        external_id=str(subject),
        email=email.strip().lower() if email else None,
        name=claims.get("name"),
        image_url=claims.get("picture"),
    )
