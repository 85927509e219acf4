"""
Paywall Node - Decides How Much of a Letter May Be Shown

Stages:
- NoResult: nothing drafted yet
- FreeShown: Low strength letters are always shown in full, free, with
  honest advice on mitigating the situation
- GatedLocked: High/Medium letter without a paid flag; only the first
  paragraph is clear, the rest is masked and a payment prompt is shown
- GatedUnlocked: High/Medium letter with a paid flag; full letter and copy

Loading a new result always passes back through NoResult first.

The paid flag is a blanket capability for the client: any paid flag
unlocks any gated result.
"""

import logging
import re
from enum import Enum
from typing import Any, Dict, Optional, Union

from state import CaseState, DraftResult, PaywallView
from nodes.classifier import ClassificationResult, Strength
from nodes.letter_builder import PARAGRAPH_SEPARATOR, split_paragraphs

logger = logging.getLogger(__name__)

OBSCURE_CHAR = "•"
_NON_WHITESPACE = re.compile(r"\S")

# Shown alongside every free (Low strength) letter
HONEST_ASSESSMENT_INTRO = (
    "Because your case is weak, we won't charge you for this draft. However, "
    "here's some honest advice to help mitigate the situation:"
)
HONEST_ASSESSMENT_ADVICE = [
    "You're likely to be at least partly liable for some of the deductions.",
    "A confrontational letter may do more harm than good in this situation.",
    "Focus on negotiating a reasonable, evidence‑based compromise with your landlord.",
    "Consider speaking to Citizens Advice or a housing solicitor before escalating.",
    "If you do proceed, be prepared to accept some responsibility and negotiate "
    "from a position of compromise rather than confrontation.",
]


class PaywallStage(Enum):
    NO_RESULT = "NoResult"
    FREE_SHOWN = "FreeShown"
    GATED_LOCKED = "GatedLocked"
    GATED_UNLOCKED = "GatedUnlocked"

    @property
    def shows_full_letter(self) -> bool:
        return self in (PaywallStage.FREE_SHOWN, PaywallStage.GATED_UNLOCKED)


def resolve_stage(strength: Optional[Strength], is_paid: bool) -> PaywallStage:
    """Stage reached from NoResult for a result of the given strength."""
    if strength is None:
        return PaywallStage.NO_RESULT
    if not strength.is_gated:
        return PaywallStage.FREE_SHOWN
    return PaywallStage.GATED_UNLOCKED if is_paid else PaywallStage.GATED_LOCKED


def obscure_text(text: str) -> str:
    """Mask every visible character, keeping the paragraph shape."""
    return _NON_WHITESPACE.sub(OBSCURE_CHAR, text)


class PaywallMachine:
    """
    Paywall state for one page instance.

    Usage:
        machine = PaywallMachine(is_paid=paid_storage.is_paid(client_id))
        machine.load_result(result)
        view = machine.render()
    """

    def __init__(self, is_paid: bool = False):
        self.is_paid = is_paid
        self.stage = PaywallStage.NO_RESULT
        self._strength: Optional[Strength] = None
        self._draft: Optional[DraftResult] = None

    @property
    def unlocked(self) -> bool:
        return self.stage == PaywallStage.GATED_UNLOCKED

    def reset(self) -> PaywallStage:
        """Drop the current result."""
        self.stage = PaywallStage.NO_RESULT
        self._strength = None
        self._draft = None
        return self.stage

    def load_result(
        self,
        result: Union[ClassificationResult, DraftResult, Dict[str, Any]],
    ) -> PaywallStage:
        """
        Show a freshly classified result.

        Raises:
            ValueError: If the result's strength is not a known tier
        """
        self.reset()

        if isinstance(result, ClassificationResult):
            draft = result.to_dict()
        else:
            draft = {
                "strength": str(result.get("strength", "")),
                "act_cited": str(result.get("act_cited", "")),
                "summary": str(result.get("summary", "")),
                "letter": str(result.get("letter", "")),
            }

        self._strength = Strength.from_string(draft["strength"])
        self._draft = draft  # type: ignore[assignment]
        self.stage = resolve_stage(self._strength, self.is_paid)

        logger.info(f"Paywall stage {self.stage.value} for {self._strength.value} result")
        return self.stage

    def unlock(self) -> PaywallStage:
        """
        Record a verified payment.

        GatedLocked moves to GatedUnlocked; in any other stage only the
        paid flag is remembered for later results.
        """
        self.is_paid = True
        if self.stage == PaywallStage.GATED_LOCKED:
            self.stage = PaywallStage.GATED_UNLOCKED
            logger.info("Paywall unlocked after verified payment")
        return self.stage

    def render(self) -> PaywallView:
        """Build the view the page should display for the current stage."""
        if self.stage == PaywallStage.NO_RESULT or self._draft is None or self._strength is None:
            return {
                "stage": self.stage.value,
                "strength": None,
                "strength_score": 0,
                "act_cited": None,
                "summary": None,
                "visible_text": "",
                "obscured_text": "",
                "obscured_paragraph_count": 0,
                "show_payment_cta": False,
                "can_copy": False,
                "copy_text": None,
                "advice_intro": None,
                "advice": [],
            }

        letter = self._draft["letter"]
        paragraphs = split_paragraphs(letter)
        free = self.stage == PaywallStage.FREE_SHOWN

        if self.stage.shows_full_letter:
            visible_text = PARAGRAPH_SEPARATOR.join(paragraphs)
            obscured_text = ""
            obscured_count = 0
            copy_text: Optional[str] = letter
        else:
            first, rest = paragraphs[:1], paragraphs[1:]
            visible_text = first[0] if first else ""
            obscured_text = obscure_text(PARAGRAPH_SEPARATOR.join(rest))
            obscured_count = len(rest)
            copy_text = None

        return {
            "stage": self.stage.value,
            "strength": self._strength.value,
            "strength_score": self._strength.score,
            "act_cited": self._draft["act_cited"],
            "summary": self._draft["summary"],
            "visible_text": visible_text,
            "obscured_text": obscured_text,
            "obscured_paragraph_count": obscured_count,
            "show_payment_cta": self.stage == PaywallStage.GATED_LOCKED,
            "can_copy": self.stage.shows_full_letter,
            "copy_text": copy_text,
            "advice_intro": HONEST_ASSESSMENT_INTRO if free else None,
            "advice": list(HONEST_ASSESSMENT_ADVICE) if free else [],
        }


def render_paywall(
    result: Union[ClassificationResult, DraftResult, Dict[str, Any]],
    is_paid: bool,
) -> PaywallView:
    """One-shot helper: load a result and render it."""
    machine = PaywallMachine(is_paid=is_paid)
    machine.load_result(result)
    return machine.render()


def paywall_node(state: CaseState) -> Dict[str, Any]:
    """
    Node C: Paywall

    Decides whether the drafted letter is shown in full or gated.
    """
    print("--- NODE: Paywall ---")

    draft = state.get("draft")
    machine = PaywallMachine(is_paid=bool(state.get("is_paid")))
    if draft:
        machine.load_result(draft)

    return {"paywall": machine.render()}
