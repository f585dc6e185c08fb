"""
Constants used across the statistics and package system.
"""

# Points awarded per decided game
WIN_POINTS = 10
LOSS_POINTS = 2

# Roster sizes: 1 = singles, 2 = doubles
MIN_ROSTER_SIZE = 1
MAX_ROSTER_SIZE = 2

# Quotas granted to a freshly created user
DEFAULT_TEAM_QUOTA = 1
DEFAULT_TOURNAMENT_QUOTA = 1

# Length of the random suffix appended to generated slugs
SLUG_SUFFIX_LENGTH = 5
