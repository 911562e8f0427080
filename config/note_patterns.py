"""
Note Analysis Patterns Configuration.

Keyword lists and regular expressions used by the heuristic note analyzer
when no semantic extractor is available.

Used by:
- api/services/heuristic_note_analyzer.py (pattern extraction)
- api/services/evidence_signals.py (product detection in implications)
"""
import re

# =============================================================================
# SUMMARY
# =============================================================================

SUMMARY_FALLBACK_CHARS = 140

# =============================================================================
# AFFECT
# =============================================================================
# Each word counts once if present anywhere in the note (case-insensitive).

POSITIVE_WORDS = (
    "great", "excited", "happy", "wonderful", "excellent", "pleased", "delighted",
)

NEGATIVE_WORDS = (
    "worried", "frustrated", "upset", "concerned", "disappointed", "angry",
)

# =============================================================================
# FACT / IMPLICATION TRIGGERS
# =============================================================================

FOLLOW_UP_PHRASES = (
    "follow up", "follow-up", "talk about", "discuss", "can we",
)

OPPORTUNITY_PHRASES = (
    "interested", "opportunity", "life insurance", "policy", "retirement",
    "savings", "want", "would like", "need", "looking for",
)

CONCERN_PHRASES = (
    "concern", "issue", "problem", "worried",
)

FACT_FOLLOW_UP = "Follow-up requested"
IMPLICATION_OPPORTUNITY = "Potential opportunity"
IMPLICATION_RISK = "Potential risk/concern"

# =============================================================================
# PEOPLE
# =============================================================================
# Keywords match in any case; captured names must be Capitalized.
# Order matters: earlier rules win when the same name is found twice.
# Each entry: (pattern, indicates_new_person). When a pattern has two groups,
# group 1 is the relationship and the last group is the name.

CAPITALIZED_NAME = r"([A-Z][a-z]+)"

PEOPLE_PATTERNS = (
    # "I just had a son. His name is William"
    (
        re.compile(
            r"(?i:\b(?:just had|recently had|new))\s+(?i:a\s+)?(?i:\b(son|daughter|child|baby)\b)"
            r".*?(?i:\b(?:name is|named|called))\s+" + CAPITALIZED_NAME,
            re.DOTALL,
        ),
        True,
    ),
    # "my wife Mary"
    (
        re.compile(
            r"(?i:\b(?:my|his|her))\s+(?i:(wife|husband|spouse|partner))\s+" + CAPITALIZED_NAME
        ),
        False,
    ),
    # "name is William", "named Billy"
    (
        re.compile(r"(?i:\b(?:name is|named|called))\s+" + CAPITALIZED_NAME),
        False,
    ),
)

# =============================================================================
# FINANCIAL TOPICS
# =============================================================================

LIFE_INSURANCE = "Life Insurance"
RETIREMENT = "Retirement"

# product type -> (trigger keywords, amount anchor keywords, sentiment anchor)
TOPIC_RULES = {
    LIFE_INSURANCE: {
        "triggers": ("life insurance", "policy"),
        "amount_anchors": ("life insurance", "policy"),
        "sentiment_anchor": "life insurance",
        "has_beneficiary": True,
    },
    RETIREMENT: {
        "triggers": ("retirement", "401k", "ira"),
        "amount_anchors": ("retirement", "savings"),
        "sentiment_anchor": "retirement",
        "has_beneficiary": False,
    },
}

# Dollar amounts with optional thousands grouping: $500, $50,000
AMOUNT_PATTERN = re.compile(r"\$\d+(?:,\d{3})*")
AMOUNT_WINDOW_CHARS = 50

BENEFICIARY_PATTERN = re.compile(r"(?i:\bfor)\s+(?:(?i:my|his|her)\s+)?" + CAPITALIZED_NAME)

# Checked in order against the text preceding the product keyword
SENTIMENT_RULES = (
    ("wants", ("want", "would like", "interested")),
    ("increase", ("increase",)),
    ("considering", ("consider",)),
)

# Words in a topic sentiment that make it an opportunity (semantic path)
OPPORTUNITY_SENTIMENT_WORDS = ("want", "interest", "increase", "consider")

# Products named in implications that raise opportunity confidence
EXPLICIT_PRODUCT_WORDS = (
    "life insurance", "retirement", "policy", "annuity", "401k", "ira",
)
