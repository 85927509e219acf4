"""
Case Classifier Node - Case Strength, Statute and Letter Drafting

Decides how strong the tenant's position is (High / Medium / Low), which
statute to cite, and drafts a first-person rebuttal letter.

Two drafting paths share one contract:
- LLM drafting (primary): one chat completion that returns JSON with
  strength, act_cited, summary and letter
- Keyword drafting (fallback): a fixed decision table over a small
  vocabulary plus a templated letter

The LLM path is tried first. If it is disabled, unconfigured, fails, or
returns an incomplete object, the keyword drafter's result is used, so a
letter always exists once intake validation has passed.
"""

import os
import json
import time
import logging
from abc import ABC, abstractmethod
from typing import List, Dict, Any, Optional, Sequence, Union
from dataclasses import dataclass, field
from enum import Enum

from langchain_anthropic import ChatAnthropic
from langchain_core.messages import HumanMessage, SystemMessage
from langchain_openai import ChatOpenAI

from state import CaseState, DraftResult
from nodes.intake import Stance
from nodes.letter_builder import assemble_letter, split_paragraphs

# Configure logger
logger = logging.getLogger(__name__)


# ============================================================================
# Errors
# ============================================================================

class DraftingConfigError(RuntimeError):
    """A required drafting credential or setting is missing."""


class DraftingServiceError(RuntimeError):
    """The drafting service could not produce a usable draft."""


class IncompleteDraftError(DraftingServiceError):
    """The drafting service answered, but not with the four required fields."""


# ============================================================================
# Case Strength
# ============================================================================

class Strength(Enum):
    """Estimated favourability of the tenant's negotiating position."""
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"

    @property
    def is_gated(self) -> bool:
        """High and Medium letters sit behind the paywall."""
        return self in (Strength.HIGH, Strength.MEDIUM)

    @property
    def score(self) -> int:
        """Strength meter value shown next to the result."""
        return STRENGTH_SCORES[self]

    @classmethod
    def from_string(cls, value: Optional[str]) -> "Strength":
        """Parse a tier name case-insensitively. Raises ValueError otherwise."""
        normalized = (value or "").strip().lower()
        for strength in cls:
            if strength.value.lower() == normalized:
                return strength
        raise ValueError(f"Unknown strength: {value!r}")


STRENGTH_SCORES: Dict[Strength, int] = {
    Strength.HIGH: 90,
    Strength.MEDIUM: 55,
    Strength.LOW: 25,
}

REQUIRED_FIELDS = ("strength", "act_cited", "summary", "letter")


# ============================================================================
# Classification Result
# ============================================================================

@dataclass
class ClassificationResult:
    """Result of classifying and drafting a case."""

    strength: Strength
    act_cited: str
    summary: str
    letter: str
    method: str  # "llm", "keyword"
    processing_time_ms: float = 0.0

    @property
    def is_gated(self) -> bool:
        return self.strength.is_gated

    @property
    def paragraphs(self) -> List[str]:
        return split_paragraphs(self.letter)

    def to_dict(self) -> DraftResult:
        """Wire form, without diagnostics."""
        return {
            "strength": self.strength.value,
            "act_cited": self.act_cited,
            "summary": self.summary,
            "letter": self.letter,
        }

    @classmethod
    def from_payload(
        cls,
        payload: Any,
        method: str = "llm",
        processing_time_ms: float = 0.0,
    ) -> "ClassificationResult":
        """
        Build a result from a drafting service JSON object.

        Extra keys are dropped.

        Raises:
            IncompleteDraftError: If the payload is not an object, a required
                field is missing or blank, or strength is not a known tier
        """
        if not isinstance(payload, dict):
            raise IncompleteDraftError("Draft payload is not a JSON object")

        missing = [
            name for name in REQUIRED_FIELDS
            if not isinstance(payload.get(name), str) or not payload[name].strip()
        ]
        if missing:
            raise IncompleteDraftError(f"Draft payload missing fields: {', '.join(missing)}")

        try:
            strength = Strength.from_string(payload["strength"])
        except ValueError as e:
            raise IncompleteDraftError(str(e)) from e

        return cls(
            strength=strength,
            act_cited=payload["act_cited"].strip(),
            summary=payload["summary"].strip(),
            letter=payload["letter"].strip(),
            method=method,
            processing_time_ms=processing_time_ms,
        )


def is_complete_result(result: Optional[ClassificationResult]) -> bool:
    """True when a result can be shown to the user as-is."""
    if result is None:
        return False
    return bool(
        result.act_cited.strip()
        and result.summary.strip()
        and result.paragraphs
    )


# ============================================================================
# Drafting Configuration
# ============================================================================

DEFAULT_MODELS: Dict[str, str] = {
    "openai": "gpt-4o",
    "anthropic": "claude-3-5-sonnet-latest",
}

API_KEY_ENV_VARS: Dict[str, str] = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
}


@dataclass
class DraftingConfig:
    """Configuration for case drafting."""

    # LLM settings
    use_llm: bool = True
    llm_provider: str = "openai"  # "openai", "anthropic"
    llm_model: str = "gpt-4o"
    llm_temperature: float = 0.2
    llm_max_tokens: int = 2000

    # Longest email forwarded to the drafting service
    max_chars_for_drafting: int = 12000

    @classmethod
    def from_env(cls) -> "DraftingConfig":
        """
        Build the config from DRAFTER_* environment variables.

        Raises:
            DraftingConfigError: If DRAFTER_LLM_TEMPERATURE is not a number
        """
        provider = os.getenv("DRAFTER_LLM_PROVIDER", "openai").lower()
        raw_temperature = os.getenv("DRAFTER_LLM_TEMPERATURE", "0.2")
        try:
            temperature = float(raw_temperature)
        except ValueError:
            raise DraftingConfigError(
                f"DRAFTER_LLM_TEMPERATURE must be a number, got {raw_temperature!r}"
            ) from None

        return cls(
            use_llm=os.getenv("DRAFTER_USE_LLM", "true").lower() == "true",
            llm_provider=provider,
            llm_model=os.getenv("DRAFTER_LLM_MODEL", DEFAULT_MODELS.get(provider, "gpt-4o")),
            llm_temperature=temperature,
        )


# ============================================================================
# Keyword-Based Drafting
# ============================================================================

CLEANING_KEYWORDS = ("cleaning", "professional clean")
CARPET_KEYWORDS = ("carpet",)
REPAIR_KEYWORDS = ("repair", "damage")

ACT_PERMITTED_PAYMENTS = "Tenant Fees Act 2019 – Schedule 1 (Permitted Payments)"
ACT_DEPOSIT_AND_CONSUMER = "Housing Act 2004 & Consumer Rights Act 2015"
ACT_DEPOSIT_PROTECTION = "Housing Act 2004 (Deposit Protection) & Consumer Rights Act 2015"
ACT_FEES_AND_FAIRNESS = "Tenant Fees Act 2019 & Consumer Rights Act 2015 (fairness of terms)"

SUMMARY_PROHIBITED_FEES = (
    "Strong case: the landlord appears to be claiming broad “professional "
    "cleaning” or admin fees which are often prohibited unless clearly evidenced "
    "and limited to actual loss."
)
SUMMARY_MIXED = (
    "Mixed case: some items may be legitimate, but the landlord still has to "
    "prove loss and compliance with deposit protection rules and fair contract terms."
)
SUMMARY_DEPOSIT_PROTECTION = (
    "There may be scope to challenge the deductions, especially if the deposit "
    "was not protected correctly or charges are not transparently set out."
)
SUMMARY_BETTERMENT_STRONG = (
    "Good prospects of reducing the amount: even where some responsibility is "
    "accepted, the landlord cannot charge “new for old” and must allow for age, "
    "condition and fair wear and tear."
)
SUMMARY_BETTERMENT = (
    "There is a realistic chance of reducing the figures by relying on "
    "apportionment and betterment, even though some liability is accepted."
)


@dataclass(frozen=True)
class KeywordSignals:
    """Which deduction categories the landlord's email mentions."""

    mentions_cleaning: bool = False
    mentions_carpet: bool = False
    mentions_repairs: bool = False

    @classmethod
    def detect(cls, text: str) -> "KeywordSignals":
        lowered = (text or "").lower()
        return cls(
            mentions_cleaning=any(k in lowered for k in CLEANING_KEYWORDS),
            mentions_carpet=any(k in lowered for k in CARPET_KEYWORDS),
            mentions_repairs=any(k in lowered for k in REPAIR_KEYWORDS),
        )


def classify_by_keywords(email_text: str, stance: Stance) -> ClassificationResult:
    """
    Classify and draft using the fixed keyword decision table.

    Pure function of its inputs; never raises for any text.

    Args:
        email_text: The landlord's correspondence
        stance: Whether the tenant disputes liability or admits some fault

    Returns:
        ClassificationResult with method "keyword"
    """
    start_time = time.time()
    signals = KeywordSignals.detect(email_text)

    if stance == Stance.DISPUTE:
        if signals.mentions_cleaning:
            strength = Strength.HIGH
            act = ACT_PERMITTED_PAYMENTS
            summary = SUMMARY_PROHIBITED_FEES
        elif signals.mentions_carpet or signals.mentions_repairs:
            strength = Strength.MEDIUM
            act = ACT_DEPOSIT_AND_CONSUMER
            summary = SUMMARY_MIXED
        else:
            strength = Strength.MEDIUM
            act = ACT_DEPOSIT_PROTECTION
            summary = SUMMARY_DEPOSIT_PROTECTION
    else:
        # Admits fault but disputes the amount
        if signals.mentions_carpet or signals.mentions_cleaning:
            strength = Strength.HIGH
            summary = SUMMARY_BETTERMENT_STRONG
        else:
            strength = Strength.MEDIUM
            summary = SUMMARY_BETTERMENT
        act = ACT_FEES_AND_FAIRNESS

    letter = assemble_letter(
        disputes_liability=stance == Stance.DISPUTE,
        mentions_cleaning=signals.mentions_cleaning,
        mentions_carpet=signals.mentions_carpet,
    )

    return ClassificationResult(
        strength=strength,
        act_cited=act,
        summary=summary,
        letter=letter,
        method="keyword",
        processing_time_ms=(time.time() - start_time) * 1000,
    )


# ============================================================================
# LLM-Based Drafting
# ============================================================================

DRAFTING_SYSTEM_PROMPT = """You are helping a tenant draft a letter to their landlord about a deposit dispute.

YOUR TASK:
Analyze the landlord's email and the tenant's context.
Draft a letter written from the TENANT'S perspective (using "I", not "we").
Return a JSON object (NO MARKDOWN).

CRITICAL: The letter must be written in FIRST PERSON from the tenant's perspective.
- Use "I" and "my" throughout
- Do NOT write as a solicitor or use "we"
- The tenant is writing this letter themselves
- Keep it professional but personal
- Separate paragraphs with a blank line

LEGAL FRAMEWORK:
- Tenant Fees Act 2019: Bans professional cleaning fees.
- Landlord & Tenant Act 1985 (Sec 11): Landlord repairs structure/exterior.
- Housing Act 2004: Deposit protection rules.
- Principle of Betterment: Landlord cannot charge "New for Old" for wear and tear, but CAN charge full replacement cost for tenant-caused damage.

SCENARIO LOGIC (CRITICAL):
1. If Context = "Innocent/Dispute": Assume landlord is exaggerating. Cite Acts aggressively. Strength = High.
2. If Context = "Guilty/Mitigate":
   - For WEAR AND TEAR items (carpets, paint, general wear): Argue "Apportionment" (Depreciation/Betterment) to lower cost. Strength = Medium.
   - For CLEAR TENANT DAMAGE (broken windows from party, smashed doors, deliberate damage): Tenant must pay FULL replacement cost. Betterment does NOT apply. Strength = Low.
3. STRENGTH = LOW when:
   - Clear, admitted tenant fault (broken windows, smashed items, deliberate damage)
   - Damage that cannot be argued as wear and tear
   - Tenant admits responsibility but disputes only the amount (where amount is reasonable)
   - Cases where betterment/depreciation arguments don't apply

IMPORTANT: Broken windows, smashed items, party damage, deliberate damage = tenant pays FULL cost. No betterment argument. Strength = Low. act_cited = "N/A".

Respond with exactly one JSON object with exactly these four fields:
{
    "strength": "High" | "Medium" | "Low",
    "act_cited": "<Name of Act, e.g. Tenant Fees Act 2019, or 'N/A' for Low cases>",
    "summary": "<2 sentence explanation of the legal standing>",
    "letter": "<the full letter written in first person from the tenant's perspective>"
}"""


def build_user_prompt(email_text: str, stance_label: str) -> str:
    return f'Landlord Text: "{email_text}"\nTenant Context: "{stance_label}"'


def _build_llm(config: DraftingConfig):
    """
    Initialize the chat model for the configured provider.

    Raises:
        DraftingConfigError: If the provider is unknown or its key is unset
    """
    env_var = API_KEY_ENV_VARS.get(config.llm_provider)
    if env_var is None:
        raise DraftingConfigError(f"Unknown LLM provider: {config.llm_provider}")

    if not os.getenv(env_var):
        raise DraftingConfigError(
            f"{env_var} is not configured. Please add it to your .env file "
            "and restart the server."
        )

    if config.llm_provider == "openai":
        llm = ChatOpenAI(
            model=config.llm_model,
            temperature=config.llm_temperature,
            max_completion_tokens=config.llm_max_tokens,
        )
        # JSON mode guarantees a parsable object
        return llm.bind(response_format={"type": "json_object"})

    return ChatAnthropic(  # type: ignore[call-arg]
        model_name=config.llm_model,
        temperature=config.llm_temperature,
        max_tokens=config.llm_max_tokens,
    )


def parse_draft_response(
    response_text: str,
    processing_time_ms: float = 0.0,
) -> ClassificationResult:
    """
    Parse the drafting service's reply into a result.

    Raises:
        IncompleteDraftError: If the reply is not a complete JSON draft
    """
    # Handle potential markdown code blocks
    if "```json" in response_text:
        response_text = response_text.split("```json")[1].split("```")[0]
    elif "```" in response_text:
        response_text = response_text.split("```")[1].split("```")[0]

    try:
        payload = json.loads(response_text.strip())
    except json.JSONDecodeError as e:
        raise IncompleteDraftError(f"Failed to parse draft as JSON: {e}") from e

    return ClassificationResult.from_payload(
        payload,
        method="llm",
        processing_time_ms=processing_time_ms,
    )


def draft_with_llm(
    email_text: str,
    stance: Union[Stance, str],
    config: Optional[DraftingConfig] = None,
) -> ClassificationResult:
    """
    Draft the letter with the LLM.

    Args:
        email_text: The landlord's correspondence
        stance: A Stance, or a context label such as "Innocent/Dispute"
        config: Drafting configuration

    Returns:
        ClassificationResult with method "llm"

    Raises:
        DraftingConfigError: Missing credential or unknown provider
        IncompleteDraftError: Reply missing fields or not JSON
        DraftingServiceError: The provider call itself failed
    """
    config = config or DraftingConfig()
    stance_label = stance.context_label if isinstance(stance, Stance) else str(stance)

    llm = _build_llm(config)

    start_time = time.time()
    messages = [
        SystemMessage(content=DRAFTING_SYSTEM_PROMPT),
        HumanMessage(content=build_user_prompt(
            email_text[:config.max_chars_for_drafting], stance_label
        )),
    ]

    try:
        response = llm.invoke(messages)
    except Exception as e:
        raise DraftingServiceError(f"LLM drafting request failed: {e}") from e

    response_text = str(response.content)
    if not response_text.strip():
        raise IncompleteDraftError("No content generated")

    processing_time = (time.time() - start_time) * 1000
    result = parse_draft_response(response_text, processing_time)

    logger.info(f"LLM drafted a {result.strength.value} case "
                f"citing {result.act_cited} ({processing_time:.0f} ms)")
    return result


# ============================================================================
# Classifier Chain
# ============================================================================

CONFIG_WARNING = (
    "The AI drafting service is not configured ({detail}). "
    "A standard template letter was prepared instead."
)
SERVICE_WARNING = (
    "The AI drafting service is unavailable right now. "
    "A standard template letter was prepared instead."
)


class CaseClassifier(ABC):
    """A way of turning correspondence and stance into a drafted result."""

    name: str = "base"

    @abstractmethod
    def classify(self, email_text: str, stance: Stance) -> Optional[ClassificationResult]:
        """
        Return a result, or None when this classifier is switched off.

        May raise DraftingConfigError or DraftingServiceError.
        """


class LLMCaseClassifier(CaseClassifier):
    """Primary classifier backed by a chat completion model."""

    name = "llm"

    def __init__(self, config: Optional[DraftingConfig] = None):
        self.config = config or DraftingConfig()

    def classify(self, email_text: str, stance: Stance) -> Optional[ClassificationResult]:
        if not self.config.use_llm:
            return None
        return draft_with_llm(email_text, stance, self.config)


class KeywordCaseClassifier(CaseClassifier):
    """Fallback classifier; always produces a result."""

    name = "keyword"

    def classify(self, email_text: str, stance: Stance) -> Optional[ClassificationResult]:
        return classify_by_keywords(email_text, stance)


@dataclass
class ClassifierOutcome:
    """Result chosen by the chain, plus non-fatal warnings for the user."""

    result: ClassificationResult
    warnings: List[str] = field(default_factory=list)

    @property
    def method(self) -> str:
        return self.result.method


def default_classifiers(config: Optional[DraftingConfig] = None) -> List[CaseClassifier]:
    return [LLMCaseClassifier(config), KeywordCaseClassifier()]


def classify_case(
    email_text: str,
    stance: Stance,
    config: Optional[DraftingConfig] = None,
    classifiers: Optional[Sequence[CaseClassifier]] = None,
) -> ClassifierOutcome:
    """
    Classify a case using the first classifier that yields a complete result.

    The keyword classifier is always appended as the last resort, so this
    never fails.
    """
    chain = list(classifiers) if classifiers is not None else default_classifiers(config)
    if not any(isinstance(c, KeywordCaseClassifier) for c in chain):
        chain.append(KeywordCaseClassifier())

    warnings: List[str] = []

    for classifier in chain:
        try:
            result = classifier.classify(email_text, stance)
        except DraftingConfigError as e:
            logger.warning(f"{classifier.name} classifier not configured: {e}")
            warnings.append(CONFIG_WARNING.format(detail=e))
            continue
        except IncompleteDraftError as e:
            logger.warning(f"{classifier.name} response incomplete, using fallback: {e}")
            continue
        except DraftingServiceError as e:
            logger.warning(f"{classifier.name} classifier failed, using fallback: {e}")
            warnings.append(SERVICE_WARNING)
            continue

        if result is not None and is_complete_result(result):
            return ClassifierOutcome(result=result, warnings=warnings)

        if result is not None:
            logger.warning(f"{classifier.name} result incomplete, using fallback")

    # Unreachable while a keyword classifier is in the chain
    return ClassifierOutcome(result=classify_by_keywords(email_text, stance), warnings=warnings)


# ============================================================================
# Main Node Function
# ============================================================================

def classifier_node(state: CaseState) -> Dict[str, Any]:
    """
    Node B: Case Classifier

    Drafts the letter through the classifier chain (LLM first, keyword
    fallback) and records which path produced it.
    """
    print("--- NODE: Classifier ---")

    stance = Stance.from_string(state.get("stance") or Stance.DISPUTE.value)

    config_warnings: List[str] = []
    try:
        config = DraftingConfig.from_env()
    except DraftingConfigError as e:
        logger.warning(f"Drafting configuration invalid, using keywords only: {e}")
        config = DraftingConfig(use_llm=False)
        config_warnings.append(CONFIG_WARNING.format(detail=e))

    outcome = classify_case(state.get("email_text", ""), stance, config)

    logger.info(f"Classified as {outcome.result.strength.value} via {outcome.method}")

    return {
        "status": "Drafted",
        "draft": outcome.result.to_dict(),
        "draft_method": outcome.method,
        "warnings": list(state.get("warnings") or []) + config_warnings + outcome.warnings,
    }
