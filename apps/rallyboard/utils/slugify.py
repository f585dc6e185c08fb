"""URL-safe slug generation utilities."""

import re
import secrets
import string
import unicodedata

from rallyboard.utils.constants import SLUG_SUFFIX_LENGTH

_BASE36 = string.digits + string.ascii_lowercase


def slugify(text: str) -> str:
    """Convert text to a URL-safe slug (lowercase, hyphens, no special chars).

    Args:
        text: Text to slugify (e.g. "Smash Brothers").

    Returns:
        Slugified text (e.g. "smash-brothers").
    """
    text = unicodedata.normalize("NFKD", text).encode("ascii", "ignore").decode("ascii")
    text = text.lower().strip()
    text = re.sub(r"[^\w\s-]", "", text)
    text = re.sub(r"[\s_]+", "-", text)
    text = re.sub(r"-+", "-", text)
    return text.strip("-")


def generate_slug(base: str) -> str:
    """Slugify ``base`` and append a short random base36 suffix.

    Used for sessions and games, whose names are not unique on their own.
    """
    suffix = "".join(secrets.choice(_BASE36) for _ in range(SLUG_SUFFIX_LENGTH))
    clean = slugify(base)
    return f"{clean}-{suffix}" if clean else suffix
