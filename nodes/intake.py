"""
Case Intake Node - Input Validation Before Drafting

Blocks a submission locally, before any network call is made, when:
- the correspondence asks for a disallowed strategy (rent withholding)
- the user has not confirmed their details are truthful
- no correspondence text was pasted

The disallowed-strategy check runs first so it rejects regardless of
the other fields.
"""

import logging
from enum import Enum
from typing import Any, Dict, List, Optional

from state import CaseState, ValidationError

logger = logging.getLogger(__name__)


class Stance(Enum):
    """The tenant's declared position on the deductions."""
    DISPUTE = "dispute"
    ADMIT_FAULT = "admit"

    @property
    def context_label(self) -> str:
        """Label sent to the drafting service."""
        return CONTEXT_LABELS[self]

    @classmethod
    def from_string(cls, value: Optional[str]) -> "Stance":
        """
        Parse a stance from a UI value or a drafting context label.

        Accepts 'dispute' / 'admit' as well as 'Innocent/Dispute' /
        'Guilty/Mitigate'. Raises ValueError for anything else.
        """
        normalized = (value or "").strip().lower()
        for stance in cls:
            if normalized in (stance.value, stance.context_label.lower()):
                return stance
        if normalized in ("admit_fault", "admitfault", "guilty", "mitigate"):
            return cls.ADMIT_FAULT
        if normalized in ("innocent",):
            return cls.DISPUTE
        raise ValueError(f"Unknown stance: {value!r}")


CONTEXT_LABELS: Dict[Stance, str] = {
    Stance.DISPUTE: "Innocent/Dispute",
    Stance.ADMIT_FAULT: "Guilty/Mitigate",
}

DISALLOWED_STRATEGY_PHRASES = ("withhold rent", "rent strike")

DISALLOWED_STRATEGY_MESSAGE = (
    "Deposit Defender cannot draft or support rent strike or withholding-rent "
    "strategies. Please seek independent legal advice."
)
UNCONFIRMED_MESSAGE = (
    "Please confirm that your details are true and that this is not legal advice."
)
EMPTY_EMAIL_MESSAGE = "Please paste your landlord's email so we can analyse it."


def mentions_disallowed_strategy(text: str) -> bool:
    lowered = (text or "").lower()
    return any(phrase in lowered for phrase in DISALLOWED_STRATEGY_PHRASES)


def validate_case_input(
    email_text: Optional[str],
    confirmed_truthful: bool,
    stance: Optional[str] = None,
) -> List[ValidationError]:
    """
    Validate a submission.

    Only the first failing check is reported, matching how the page shows
    a single message at a time.

    Returns:
        List of ValidationError dicts; empty when the case may be drafted
    """
    text = email_text or ""

    if mentions_disallowed_strategy(text):
        return [{
            "field": "email_text",
            "message": DISALLOWED_STRATEGY_MESSAGE,
            "severity": "Error",
        }]

    if not confirmed_truthful:
        return [{
            "field": "confirmed_truthful",
            "message": UNCONFIRMED_MESSAGE,
            "severity": "Error",
        }]

    if not text.strip():
        return [{
            "field": "email_text",
            "message": EMPTY_EMAIL_MESSAGE,
            "severity": "Error",
        }]

    if stance is not None:
        try:
            Stance.from_string(stance)
        except ValueError:
            return [{
                "field": "stance",
                "message": "Please choose whether you dispute the charges or accept some fault.",
                "severity": "Error",
            }]

    return []


def intake_node(state: CaseState) -> Dict[str, Any]:
    """
    Node A: Case Intake

    Validates the user's submission. Rejected cases never reach the
    classifier, so no drafting request is made for them.
    """
    print("--- NODE: Intake ---")

    errors = validate_case_input(
        state.get("email_text"),
        bool(state.get("confirmed_truthful")),
        state.get("stance"),
    )

    if errors:
        logger.info(f"Case rejected at intake: {errors[0]['message']}")
        return {"status": "Rejected", "validation_errors": errors}

    return {
        "status": "Received",
        "validation_errors": [],
        "stance": Stance.from_string(state.get("stance") or Stance.DISPUTE.value).value,
    }
