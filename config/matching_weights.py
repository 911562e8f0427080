"""
Duplicate Person Matching Weights Configuration.

Central configuration for the name-based duplicate matcher used when linking
evidence participants to people and when creating new people.

These values were tuned empirically against real contact lists. Edit this
file to tune matching behavior rather than hard-coding new thresholds.
"""

# =============================================================================
# SCORING
# =============================================================================
# Formula: score = jaccard(tokens_a, tokens_b)
#          + SURNAME_BOOST if last tokens are equal (capped at 1.0)
# Override: score = 1.0 when both names have >= 2 tokens and the first and
#           last tokens are equal after nickname normalization.

SURNAME_BOOST = 0.25            # Added when surnames agree
DEFAULT_MATCH_THRESHOLD = 0.60  # Minimum score reported as a probable duplicate
MAX_SCORE = 1.0

# =============================================================================
# CANONICALIZATION
# =============================================================================

# Names with at least this many tokens have single-letter tokens dropped
# (treated as middle initials: "John Q Public" -> "john public")
MIDDLE_INITIAL_MIN_TOKENS = 3

# =============================================================================
# PROPOSED LINKS
# =============================================================================

# Maximum number of people proposed for a single participant hint
MAX_PROPOSALS_PER_HINT = 3
