"""
Template letter assembly for the keyword drafter.

A letter is six fixed blocks joined by blank lines. Which liability,
cleaning and carpet blocks are used depends on the stance and on the
keywords found in the landlord's email.
"""

import re
from typing import List

PARAGRAPH_SEPARATOR = "\n\n"

# Blank line, possibly containing stray whitespace
_PARAGRAPH_BREAK = re.compile(r"\n\s*\n")

# ============================================================================
# Prose Blocks
# ============================================================================

OPENING = (
    "Dear Sir or Madam,\n\n"
    "I write in response to your proposed deductions from my tenancy deposit. "
    "I do not accept the sums you have claimed and set out below my position "
    "with reference to the relevant housing legislation and guidance."
)

LIABILITY_DISPUTE = (
    "First, I dispute liability for the majority of the alleged damage and "
    "charges. Your schedule overstates both the extent of any disrepair and the "
    "cost of remedying it. Under the Housing Act 2004 and the Landlord and Tenant "
    "Act 1985 (section 11), landlords must distinguish between genuine disrepair "
    "caused by a tenant and ordinary wear and tear that arises from normal use "
    "over time."
)

LIABILITY_ADMIT = (
    "I acknowledge that some responsibility may rest with me. However, the level "
    "of the deductions you propose is excessive and does not reflect the legal "
    "requirement to consider fair wear and tear, age and condition, and to avoid "
    "any “betterment” or profit at the tenant’s expense."
)

CLEANING = (
    "In relation to cleaning, the Tenant Fees Act 2019 restricts landlords and "
    "agents from imposing general “professional cleaning” or blanket charges. "
    "Any cleaning cost must be based on clear evidence of the property’s "
    "condition at check-in and check-out, and must represent a genuine, "
    "reasonable cost of returning the property to its original condition – not "
    "an opportunity to improve it."
)

REDECORATION = (
    "Any claim for redecoration, gardening or similar work must be supported by "
    "detailed, contemporaneous check-in and check-out evidence. General "
    "assertions of a need to “freshen up” the property are not, by themselves, "
    "a lawful basis for substantial deductions from a protected deposit."
)

CARPET = (
    "Where you seek to charge for carpet or flooring, you are required to make "
    "appropriate deductions for age and prior condition. The principle of "
    "betterment – reflected in tenancy deposit scheme guidance and consistent "
    "with the Consumer Rights Act 2015 – means you cannot replace a worn item "
    "with something new at my expense, save for a proportionate contribution "
    "that reflects any actual loss beyond fair wear and tear."
)

REPLACEMENT = (
    "For any items you say require replacement, you must show that the cost "
    "claimed reflects only the remaining value of the item, taking into account "
    "its age and prior condition, rather than the full cost of a brand‑new "
    "replacement."
)

DEPOSIT_PROTECTION = (
    "Under the Housing Act 2004 you are also under a duty to have complied with "
    "tenancy deposit protection requirements and to provide clear, itemised "
    "evidence to any deposit scheme or court. Unsupported or inflated figures "
    "are unlikely to be upheld by an adjudicator."
)

CLOSING = (
    "In light of the above, I invite you to review your proposed deductions and "
    "provide a fully itemised, evidence‑based breakdown that complies with the "
    "Tenant Fees Act 2019, the Housing Act 2004, the Landlord and Tenant Act 1985 "
    "and the Consumer Rights Act 2015. If we are unable to reach a fair and "
    "lawful compromise, I will have no option but to ask the deposit protection "
    "scheme or a court to determine the matter.\n\n"
    "Yours faithfully,\n"
    "[Your Name]"
)


def assemble_letter(
    disputes_liability: bool,
    mentions_cleaning: bool,
    mentions_carpet: bool,
) -> str:
    """Join the prose blocks selected by stance and keyword presence."""
    blocks = [
        OPENING,
        LIABILITY_DISPUTE if disputes_liability else LIABILITY_ADMIT,
        CLEANING if mentions_cleaning else REDECORATION,
        CARPET if mentions_carpet else REPLACEMENT,
        DEPOSIT_PROTECTION,
        CLOSING,
    ]
    return PARAGRAPH_SEPARATOR.join(blocks)


def split_paragraphs(letter: str) -> List[str]:
    """Split a letter on blank lines, dropping empty paragraphs."""
    if not letter:
        return []
    parts = [part.strip() for part in _PARAGRAPH_BREAK.split(letter)]
    return [part for part in parts if part]
