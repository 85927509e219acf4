"""
FastAPI Server for the Deposit Defender API

Provides endpoints for:
- Drafting a letter through the LLM (raw drafting endpoint)
- Running the full draft flow (validation, drafting with fallback, paywall)
- Re-rendering a result against the client's paid flag
- Creating and verifying the unlock checkout session
"""

import logging
import os
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

import paid_storage
from main import run_case
from nodes.classifier import (
    DraftingConfig,
    DraftingConfigError,
    DraftingServiceError,
    draft_with_llm,
)
from nodes.intake import EMPTY_EMAIL_MESSAGE
from nodes.paywall import render_paywall
from payment_client import PaymentAPIError, PaymentConfigError, StripePaymentClient

load_dotenv()
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# ============================================================================
# FastAPI App
# ============================================================================

app = FastAPI(
    title="Deposit Defender API",
    description="Deposit dispute letter drafting with a paid unlock",
    version="0.1.0",
)

# CORS for the front end (dev server typically on 3000)
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        origin.strip()
        for origin in os.getenv("CORS_ORIGINS", "http://localhost:3000,http://localhost:5173").split(",")
        if origin.strip()
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def error_response(message: str, status_code: int = 500, **extra: Any) -> JSONResponse:
    """Failure body in the {error: ...} shape the front end expects."""
    return JSONResponse(status_code=status_code, content={"error": message, **extra})


# ============================================================================
# Pydantic Models for API
# ============================================================================

class ChatRequest(BaseModel):
    """Raw drafting request."""
    text: Optional[str] = ""
    context: Optional[str] = "Innocent/Dispute"  # or 'Guilty/Mitigate'


class DraftRequest(BaseModel):
    """A full submission from the page."""
    text: Optional[str] = ""
    context: Optional[str] = "dispute"
    confirmed: bool = False
    clientId: Optional[str] = None


class DraftResultModel(BaseModel):
    strength: str
    act_cited: str
    summary: str
    letter: str = Field(min_length=1)


class PaywallRequest(BaseModel):
    """Re-render an existing result, e.g. after a page reload."""
    result: DraftResultModel
    clientId: Optional[str] = None


class CheckoutRequest(BaseModel):
    letterId: Optional[str] = None


class VerifyPaymentRequest(BaseModel):
    sessionId: Optional[str] = None
    clientId: Optional[str] = None


# ============================================================================
# API Endpoints
# ============================================================================

@app.get("/api/health")
def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "service": "deposit-defender-api"}


@app.post("/api/chat")
def chat(request: ChatRequest):
    """Draft a letter with the LLM only; the caller handles fallback."""
    if not (request.text or "").strip():
        return error_response(EMPTY_EMAIL_MESSAGE, 400)

    try:
        result = draft_with_llm(
            request.text or "",
            request.context or "Innocent/Dispute",
            DraftingConfig.from_env(),
        )
    except DraftingConfigError as e:
        logger.error(f"Drafting configuration error: {e}")
        return error_response(str(e), 500)
    except DraftingServiceError as e:
        logger.error(f"Drafting error: {e}")
        return error_response("Failed to generate draft", 500)

    return result.to_dict()


@app.post("/api/draft")
def draft(request: DraftRequest) -> Dict[str, Any]:
    """Validate, draft (LLM with keyword fallback) and apply the paywall."""
    final_state = run_case(
        request.text or "",
        stance=request.context or "dispute",
        confirmed_truthful=request.confirmed,
        client_id=request.clientId,
        is_paid=paid_storage.is_paid(request.clientId),
    )

    errors: List[Dict[str, Any]] = list(final_state.get("validation_errors") or [])
    if errors:
        return error_response(errors[0]["message"], 400, validation_errors=errors)

    return {
        "letterId": final_state["letter_id"],
        "result": final_state["draft"],
        "method": final_state.get("draft_method"),
        "warnings": final_state.get("warnings") or [],
        "paywall": final_state["paywall"],
    }


@app.post("/api/paywall")
def paywall(request: PaywallRequest):
    """Render a previously drafted result against the client's paid flag."""
    try:
        return render_paywall(
            request.result.model_dump(),
            is_paid=paid_storage.is_paid(request.clientId),
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.get("/api/clients/{client_id}/paid")
def get_paid_status(client_id: str):
    """Whether a client has a persisted paid flag."""
    try:
        record = paid_storage.load_paid_record(client_id)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"clientId": client_id, "paid": bool(record and record.get("paid"))}


@app.post("/api/create-checkout")
def create_checkout(request: CheckoutRequest):
    """Create the fixed-price unlock checkout session."""
    try:
        client = StripePaymentClient()
        return client.create_session(request.letterId)
    except PaymentConfigError as e:
        logger.error(f"Payment configuration error: {e}")
        return error_response(str(e), 500)
    except PaymentAPIError as e:
        logger.error(f"Stripe checkout error: {e}")
        return error_response(e.message or "Failed to create checkout session", 500)


@app.post("/api/verify-payment")
def verify_payment(request: VerifyPaymentRequest):
    """Verify a checkout session and persist the client's paid flag."""
    if not request.sessionId:
        return error_response("Session ID is required", 400)
    if request.clientId and not paid_storage.is_valid_client_id(request.clientId):
        return error_response(f"Invalid client id: {request.clientId!r}", 400)

    try:
        client = StripePaymentClient()
        verification = client.verify_session(request.sessionId)
    except PaymentConfigError as e:
        logger.error(f"Payment configuration error: {e}")
        return error_response(str(e), 500)
    except PaymentAPIError as e:
        logger.error(f"Payment verification error: {e}")
        if e.status_code < 500:
            # Unknown or malformed session id
            return JSONResponse(status_code=400, content={"verified": False, "error": e.message})
        return error_response(e.message or "Failed to verify payment", 500)

    if not verification["verified"]:
        return JSONResponse(status_code=400, content={"verified": False})

    if request.clientId:
        paid_storage.mark_paid(
            request.clientId,
            session_id=request.sessionId,
            letter_id=verification.get("letterId"),
        )

    return verification


# ============================================================================
# Run with: uvicorn server:app --reload
# ============================================================================
