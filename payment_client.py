"""
Stripe Checkout client for the letter unlock micropayment.
Includes: session creation for the fixed-price unlock, and session verification.
"""
import logging
import os
from typing import Any, Dict, Optional

import stripe

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "http://localhost:3000"

UNLOCK_CURRENCY = "gbp"
UNLOCK_PRICE_PENCE = 499  # £4.99
UNLOCK_PRODUCT_NAME = "Deposit Defender - Full Letter Unlock"
UNLOCK_PRODUCT_DESCRIPTION = (
    "Unlock your complete deposit dispute letter with statutory references"
)


class PaymentConfigError(RuntimeError):
    """The payment provider credential is not configured."""


class PaymentAPIError(Exception):
    """Custom exception for payment provider errors"""
    def __init__(self, status_code: int, message: str, response: Optional[Dict] = None):
        self.status_code = status_code
        self.message = message
        self.response = response
        super().__init__(f"Payment API Error {status_code}: {message}")


def _field(obj: Any, name: str, default: Any = None) -> Any:
    """Read a field from a Stripe object or a plain dict."""
    if isinstance(obj, dict):
        return obj.get(name, default)
    return getattr(obj, name, default)


class StripePaymentClient:
    """
    Stripe Checkout client.

    Supports:
    - Creating a single-item, fixed-price checkout session tagged with a
      letter correlation token
    - Verifying a session by polling its payment status
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
    ):
        """
        Initialize the payment client.

        Args:
            api_key: Stripe secret key (default: STRIPE_SECRET_KEY)
            base_url: Front-end origin for redirects (default: BASE_URL)

        Raises:
            PaymentConfigError: If no secret key is available
        """
        if not api_key:
            api_key = os.getenv("STRIPE_SECRET_KEY")

        if not api_key:
            raise PaymentConfigError("STRIPE_SECRET_KEY is not configured")

        self._api_key = api_key
        self.base_url = (base_url or os.getenv("BASE_URL") or DEFAULT_BASE_URL).rstrip("/")

    def _success_url(self, letter_id: str) -> str:
        # {CHECKOUT_SESSION_ID} is substituted by Stripe
        return (
            f"{self.base_url}/success?session_id={{CHECKOUT_SESSION_ID}}"
            f"&letter_id={letter_id}"
        )

    def create_session(self, letter_id: Optional[str] = None) -> Dict[str, Any]:
        """
        Create a checkout session for one letter unlock.

        Args:
            letter_id: Opaque token linking the session to a drafted letter

        Returns:
            {"sessionId": ..., "url": ...}

        Raises:
            PaymentAPIError: If Stripe rejects the request
        """
        letter_id = letter_id or ""

        try:
            session = stripe.checkout.Session.create(
                api_key=self._api_key,
                payment_method_types=["card"],
                line_items=[
                    {
                        "price_data": {
                            "currency": UNLOCK_CURRENCY,
                            "product_data": {
                                "name": UNLOCK_PRODUCT_NAME,
                                "description": UNLOCK_PRODUCT_DESCRIPTION,
                            },
                            "unit_amount": UNLOCK_PRICE_PENCE,
                        },
                        "quantity": 1,
                    }
                ],
                mode="payment",
                success_url=self._success_url(letter_id),
                cancel_url=self.base_url,
                metadata={"letterId": letter_id},
            )
        except stripe.StripeError as e:
            raise PaymentAPIError(
                _field(e, "http_status", None) or 500,
                _field(e, "user_message", None) or str(e) or "Failed to create checkout session",
            ) from e

        session_id = _field(session, "id")
        logger.info(f"Created checkout session {session_id} for letter {letter_id or '-'}")
        return {"sessionId": session_id, "url": _field(session, "url")}

    def verify_session(self, session_id: Optional[str]) -> Dict[str, Any]:
        """
        Check whether a checkout session has been paid.

        Returns:
            {"verified": True, "letterId": ...} when paid,
            {"verified": False} otherwise

        Raises:
            ValueError: If session_id is missing
            PaymentAPIError: If Stripe cannot retrieve the session
        """
        if not session_id:
            raise ValueError("Session ID is required")

        try:
            session = stripe.checkout.Session.retrieve(session_id, api_key=self._api_key)
        except stripe.StripeError as e:
            raise PaymentAPIError(
                _field(e, "http_status", None) or 500,
                _field(e, "user_message", None) or str(e) or "Failed to verify payment",
            ) from e

        if _field(session, "payment_status") != "paid":
            logger.warning(f"Checkout session {session_id} is not paid")
            return {"verified": False}

        metadata = _field(session, "metadata") or {}
        letter_id = _field(metadata, "letterId") or ""
        logger.info(f"Verified payment for session {session_id}")
        return {"verified": True, "letterId": letter_id}
