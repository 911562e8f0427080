"""
Evidence Signal and Insight Rules Configuration.

Keyword lists, confidence ladders and message templates used to derive
deterministic signals from evidence and to turn signals into insights.

Edit this file to tune which events surface as insights.
"""

# =============================================================================
# KEYWORD SIGNALS
# =============================================================================
# Matched as substrings of the lower-cased title + snippet + body.

SIGNAL_KEYWORDS = {
    "divorce": (
        "divorce", "separation", "separated", "custody", "alimony", "dissolution",
    ),
    "coming_of_age": (
        "turning 18", "18th birthday", "age 18", "adult child", "coming of age",
    ),
    "partner_left": (
        "partner left", "left the firm", "resigned", "departure", "split", "buyout",
    ),
    "product_opportunity": (
        "annuity", "long term care", "long-term care", "ltc", "college savings",
        "529", "trust", "trusts",
    ),
    "compliance_risk": (
        "beneficiary", "survivorship", "consent", "signature", "sign",
        "underwriting", "policy change", "replacement", "illustration",
    ),
}

# hits -> base confidence (3 or more hits use the last step)
KEYWORD_CONFIDENCE_STEPS = (0.55, 0.70, 0.82)
RECENCY_BONUS = 0.05            # Evidence within RECENT_DAYS of now
UPCOMING_COMPLIANCE_BONUS = 0.05  # Compliance evidence happening within RECENT_DAYS
RECENT_DAYS = 7
MAX_SIGNAL_CONFIDENCE = 0.90

# =============================================================================
# UNLINKED EVIDENCE
# =============================================================================
# (max days from now, confidence); anything older uses the default

UNLINKED_CONFIDENCE_STEPS = ((2, 0.75), (7, 0.65))
UNLINKED_DEFAULT_CONFIDENCE = 0.55

# =============================================================================
# NOTE ANALYSIS SIGNALS
# =============================================================================

ANALYSIS_REASON_PREFIX = "Derived from analysis:"
ANALYSIS_FOLLOW_UP_CONFIDENCE = 0.70
ANALYSIS_EXPLICIT_OPPORTUNITY_CONFIDENCE = 0.75
ANALYSIS_OPPORTUNITY_CONFIDENCE = 0.65
ANALYSIS_RISK_CONFIDENCE = 0.62

# =============================================================================
# INSIGHTS
# =============================================================================

SIGNAL_TO_INSIGHT_KIND = {
    "compliance_risk": "compliance_warning",
    "divorce": "relationship_at_risk",
    "coming_of_age": "follow_up",
    "unlinked_evidence": "follow_up",
    "partner_left": "opportunity",
    "product_opportunity": "opportunity",
}

# {suffix} is " (<target name>)" or empty
INSIGHT_MESSAGES = {
    "compliance_warning": "Compliance review recommended{suffix}.",
    "relationship_at_risk": "Possible relationship change detected{suffix}. Consider a check-in.",
    "follow_up": "Suggested follow-up{suffix}.",
    "opportunity": "Possible opportunity{suffix}. Consider reviewing options.",
    "consent_missing": "Consent missing{suffix}. Please review.",
}
