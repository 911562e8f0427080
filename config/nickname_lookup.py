"""
Nickname lookup for duplicate detection.

Maps common diminutives to the formal first name used for comparison.
E.g., "Bob" -> "Robert", "Liz" -> "Elizabeth", "Mike" -> "Michael"

Only the first token of a name is ever looked up; surnames are never rewritten.
"""
from typing import Optional

# Nickname -> formal first name (all lowercase)
NICKNAME_TO_FORMAL: dict[str, str] = {
    # Robert
    "bob": "robert",
    "bobby": "robert",
    "rob": "robert",
    "robbie": "robert",
    # Elizabeth
    "beth": "elizabeth",
    "liz": "elizabeth",
    "lizzy": "elizabeth",
    "eliza": "elizabeth",
    # William
    "bill": "william",
    "billy": "william",
    "will": "william",
    "willy": "william",
    # James
    "jim": "james",
    "jimmy": "james",
    # Michael
    "mike": "michael",
    "mikey": "michael",
    # Katherine / Catherine
    "kate": "katherine",
    "katie": "katherine",
    "cathy": "catherine",
    "catie": "catherine",
    # Richard
    "rick": "richard",
    "ricky": "richard",
    "dick": "richard",
    # Others
    "dave": "david",
    "steve": "steven",
    "stephen": "steven",
    "tony": "anthony",
    "andy": "andrew",
    "ben": "benjamin",
    "jen": "jennifer",
    "jenny": "jennifer",
    "chris": "christopher",
    "alex": "alexander",
    "sue": "susan",
    "susie": "susan",
}


def get_canonical_first_name(name: Optional[str]) -> Optional[str]:
    """
    Get the formal form of a first name.

    Args:
        name: A lowercase name token

    Returns:
        The formal name if the token is a known nickname, otherwise the token itself
    """
    if not name:
        return name
    return NICKNAME_TO_FORMAL.get(name, name)
