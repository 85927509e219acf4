from typing import TypedDict, List, Optional

# ============================================================================
# Wire-Compatible Data Models
# ============================================================================

class DraftResult(TypedDict):
    """
    Classification result as exchanged with the browser and the LLM.
    Keys match the drafting endpoint's JSON body exactly.
    """
    strength: str  # 'High' | 'Medium' | 'Low'
    act_cited: str  # Statute reference, or 'N/A'
    summary: str
    letter: str  # Paragraphs separated by blank lines


class ValidationError(TypedDict):
    """
    Structured validation error for UI feedback.
    """
    field: str
    message: str
    severity: str  # 'Error' | 'Warning'


class PaymentSessionInfo(TypedDict, total=False):
    """
    A checkout session as seen by this service.
    Never persisted; the payment provider keeps the record.
    """
    session_id: str
    letter_id: str  # Opaque correlation token
    status: str  # 'pending' | 'paid'
    url: Optional[str]


class PaidRecord(TypedDict, total=False):
    """
    Persisted "paid" flag for a single client.
    """
    client_id: str
    paid: bool
    session_id: Optional[str]
    letter_id: Optional[str]
    paid_at: str


class PaywallView(TypedDict):
    """
    What the page may show for a result in the current paywall stage.
    """
    stage: str  # 'NoResult', 'FreeShown', 'GatedLocked', 'GatedUnlocked'
    strength: Optional[str]
    strength_score: int  # Bar width for the strength meter
    act_cited: Optional[str]
    summary: Optional[str]
    visible_text: str  # Rendered in clear
    obscured_text: str  # Masked placeholder for gated paragraphs
    obscured_paragraph_count: int
    show_payment_cta: bool
    can_copy: bool
    copy_text: Optional[str]  # Full letter, only once copying is allowed
    advice_intro: Optional[str]  # Honest assessment, FreeShown only
    advice: List[str]


# ============================================================================
# Main Case State
# ============================================================================

class CaseState(TypedDict, total=False):
    """
    The central state of the drafting pipeline.
    This dict is passed and updated by every node in the graph.
    """
    # Meta Information
    letter_id: str  # Correlation token handed to checkout
    status: str  # 'Received', 'Rejected', 'Drafted'

    # User Input (CaseInput)
    email_text: str
    stance: str  # 'dispute' | 'admit'
    confirmed_truthful: bool
    client_id: Optional[str]

    # Intake
    validation_errors: List[ValidationError]

    # Classification
    draft: Optional[DraftResult]
    draft_method: Optional[str]  # 'llm' | 'keyword'
    warnings: List[str]  # Non-fatal, user-visible

    # Paywall
    is_paid: bool
    paywall: Optional[PaywallView]
