"""
API tests for the Deposit Defender server and drafting pipeline.

The LLM is disabled or mocked and Stripe is mocked, so these tests run
without credentials or network access.

Run with: pytest tests/test_api.py -v
"""

import json
import os
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest
import stripe
from fastapi.testclient import TestClient

import paid_storage
from main import build_graph, run_case
from nodes.intake import DISALLOWED_STRATEGY_MESSAGE, EMPTY_EMAIL_MESSAGE
from payment_client import PaymentConfigError
from server import app


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture(autouse=True)
def storage_dir(tmp_path, monkeypatch):
    """Keep paid flags out of the working tree."""
    directory = tmp_path / "paid"
    monkeypatch.setattr(paid_storage, "STORAGE_DIR", directory)
    return directory


@pytest.fixture
def no_llm():
    with patch.dict(os.environ, {"DRAFTER_USE_LLM": "false"}):
        yield


@pytest.fixture
def stripe_env():
    with patch.dict(os.environ, {"STRIPE_SECRET_KEY": "sk_test_123", "BASE_URL": "https://defender.example"}):
        yield


@pytest.fixture
def client():
    return TestClient(app)


def _paid_session(letter_id="letter-42"):
    return SimpleNamespace(payment_status="paid", metadata=SimpleNamespace(letterId=letter_id))


# ============================================================================
# Pipeline Tests
# ============================================================================

class TestDraftingGraph:
    """Tests for the intake → classifier → paywall graph."""

    def test_graph_compiles(self):
        assert build_graph() is not None

    def test_withhold_rent_rejected_before_network(self):
        """Disallowed strategies never reach the drafting service."""
        with patch("nodes.classifier.draft_with_llm") as mock_draft, \
                patch("nodes.classifier._build_llm") as mock_build:
            state = run_case("I will withhold rent and clean nothing", "dispute", confirmed_truthful=True)

        mock_draft.assert_not_called()
        mock_build.assert_not_called()
        assert state["status"] == "Rejected"
        assert state["validation_errors"][0]["message"] == DISALLOWED_STRATEGY_MESSAGE
        assert not state.get("draft")

    def test_keyword_draft_end_to_end(self, no_llm):
        state = run_case("Professional cleaning charge £250", "dispute", confirmed_truthful=True)

        assert state["status"] == "Drafted"
        assert state["draft_method"] == "keyword"
        assert state["draft"]["strength"] == "High"
        assert state["paywall"]["stage"] == "GatedLocked"
        assert state["letter_id"]

    def test_llm_failure_falls_back(self):
        failing_llm = MagicMock()
        failing_llm.invoke.side_effect = TimeoutError("timed out")
        with patch.dict(os.environ, {"DRAFTER_USE_LLM": "true"}), \
                patch("nodes.classifier._build_llm", return_value=failing_llm):
            state = run_case("Carpet replacement", "admit", confirmed_truthful=True)

        assert state["draft_method"] == "keyword"
        assert state["draft"]["strength"] == "High"
        assert len(state["warnings"]) == 1

    def test_llm_low_result_is_free(self):
        llm = MagicMock()
        llm.invoke.return_value = MagicMock(content=json.dumps({
            "strength": "Low",
            "act_cited": "N/A",
            "summary": "Party damage is the tenant's responsibility.",
            "letter": "Dear Landlord,\n\nI will pay for the smashed door.\n\nRegards,\nJo",
        }))
        with patch.dict(os.environ, {"DRAFTER_USE_LLM": "true"}), \
                patch("nodes.classifier._build_llm", return_value=llm):
            state = run_case("Door smashed during a party", "admit", confirmed_truthful=True)

        assert state["draft_method"] == "llm"
        assert state["paywall"]["stage"] == "FreeShown"
        assert state["paywall"]["can_copy"]
        assert len(state["paywall"]["advice"]) == 5


# ============================================================================
# Endpoint Tests
# ============================================================================

class TestHealth:

    def test_health(self, client):
        response = client.get("/api/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"


class TestChatEndpoint:
    """Tests for the raw drafting endpoint."""

    def test_missing_key_is_configuration_error(self, client):
        with patch.dict(os.environ, {}, clear=True):
            response = client.post("/api/chat", json={"text": "Cleaning fee", "context": "Innocent/Dispute"})

        assert response.status_code == 500
        assert "OPENAI_API_KEY" in response.json()["error"]

    def test_success(self, client):
        llm = MagicMock()
        llm.invoke.return_value = MagicMock(content=json.dumps({
            "strength": "High",
            "act_cited": "Tenant Fees Act 2019",
            "summary": "Cleaning fees are banned.",
            "letter": "Dear Landlord,\n\nI dispute the cleaning fee.",
        }))
        with patch("nodes.classifier._build_llm", return_value=llm):
            response = client.post("/api/chat", json={"text": "Cleaning fee", "context": "Innocent/Dispute"})

        assert response.status_code == 200
        assert response.json() == {
            "strength": "High",
            "act_cited": "Tenant Fees Act 2019",
            "summary": "Cleaning fees are banned.",
            "letter": "Dear Landlord,\n\nI dispute the cleaning fee.",
        }

    def test_incomplete_reply(self, client):
        llm = MagicMock()
        llm.invoke.return_value = MagicMock(content='{"strength": "High"}')
        with patch("nodes.classifier._build_llm", return_value=llm):
            response = client.post("/api/chat", json={"text": "Cleaning fee", "context": "Innocent/Dispute"})

        assert response.status_code == 500
        assert response.json() == {"error": "Failed to generate draft"}

    def test_malformed_temperature_is_configuration_error(self, client):
        with patch.dict(os.environ, {"DRAFTER_LLM_TEMPERATURE": "warm"}):
            response = client.post("/api/chat", json={"text": "Cleaning fee", "context": "Innocent/Dispute"})

        assert response.status_code == 500
        assert "DRAFTER_LLM_TEMPERATURE" in response.json()["error"]

    def test_empty_text(self, client):
        response = client.post("/api/chat", json={"text": "", "context": "Innocent/Dispute"})
        assert response.status_code == 400


class TestDraftEndpoint:
    """Tests for the full drafting flow."""

    def test_empty_email_rejected(self, client, no_llm):
        response = client.post("/api/draft", json={"text": "", "context": "dispute", "confirmed": True})

        assert response.status_code == 400
        assert response.json()["error"] == EMPTY_EMAIL_MESSAGE

    def test_unconfirmed_rejected(self, client, no_llm):
        response = client.post("/api/draft", json={"text": "Carpet", "confirmed": False})
        assert response.status_code == 400
        assert response.json()["validation_errors"][0]["field"] == "confirmed_truthful"

    def test_gated_draft(self, client, no_llm):
        response = client.post("/api/draft", json={
            "text": "We are charging for a professional clean.",
            "context": "Innocent/Dispute",
            "confirmed": True,
            "clientId": "client-1",
        })

        assert response.status_code == 200
        body = response.json()
        assert body["result"]["strength"] == "High"
        assert body["method"] == "keyword"
        assert body["letterId"]
        assert body["paywall"]["stage"] == "GatedLocked"
        assert body["paywall"]["show_payment_cta"]
        assert body["paywall"]["copy_text"] is None

    def test_paid_client_sees_full_letter(self, client, no_llm):
        paid_storage.mark_paid("client-1")
        response = client.post("/api/draft", json={
            "text": "Carpet replacement",
            "context": "dispute",
            "confirmed": True,
            "clientId": "client-1",
        })

        paywall = response.json()["paywall"]
        assert paywall["stage"] == "GatedUnlocked"
        assert paywall["can_copy"]

    def test_malformed_temperature_still_drafts(self, client):
        with patch.dict(os.environ, {"DRAFTER_USE_LLM": "true", "DRAFTER_LLM_TEMPERATURE": "warm"}):
            response = client.post("/api/draft", json={
                "text": "professional cleaning £200",
                "context": "dispute",
                "confirmed": True,
            })

        assert response.status_code == 200
        body = response.json()
        assert body["method"] == "keyword"
        assert body["result"]["strength"] == "High"
        assert "DRAFTER_LLM_TEMPERATURE" in body["warnings"][0]


class TestPaywallEndpoint:

    def test_rerender_after_payment(self, client):
        result = {
            "strength": "Medium",
            "act_cited": "Housing Act 2004",
            "summary": "Mixed case.",
            "letter": "Dear Sir,\n\nFirst point.\n\nSecond point.",
        }
        locked = client.post("/api/paywall", json={"result": result, "clientId": "client-9"}).json()
        assert locked["stage"] == "GatedLocked"
        assert locked["visible_text"] == "Dear Sir,"

        paid_storage.mark_paid("client-9")
        unlocked = client.post("/api/paywall", json={"result": result, "clientId": "client-9"}).json()
        assert unlocked["stage"] == "GatedUnlocked"
        assert unlocked["copy_text"] == result["letter"]

    def test_unknown_strength(self, client):
        result = {"strength": "Huge", "act_cited": "x", "summary": "y", "letter": "z"}
        response = client.post("/api/paywall", json={"result": result})
        assert response.status_code == 400

    def test_paid_status(self, client):
        assert client.get("/api/clients/client-3/paid").json() == {"clientId": "client-3", "paid": False}
        paid_storage.mark_paid("client-3")
        assert client.get("/api/clients/client-3/paid").json()["paid"] is True

    def test_paid_status_ignores_malformed_record(self, client, storage_dir):
        storage_dir.mkdir(parents=True)
        (storage_dir / "client-4.json").write_text('["paid"]')
        assert client.get("/api/clients/client-4/paid").json() == {"clientId": "client-4", "paid": False}


class TestCheckoutEndpoint:

    def test_create_checkout(self, client, stripe_env):
        session = SimpleNamespace(id="cs_test_1", url="https://checkout.stripe.com/c/pay/cs_test_1")
        with patch("payment_client.stripe.checkout.Session.create", return_value=session):
            response = client.post("/api/create-checkout", json={"letterId": "letter-42"})

        assert response.status_code == 200
        assert response.json() == {"sessionId": "cs_test_1", "url": "https://checkout.stripe.com/c/pay/cs_test_1"}

    def test_missing_configuration(self, client):
        with patch.dict(os.environ, {}, clear=True):
            response = client.post("/api/create-checkout", json={"letterId": "letter-42"})

        assert response.status_code == 500
        assert response.json() == {"error": "STRIPE_SECRET_KEY is not configured"}


class TestVerifyPaymentEndpoint:

    def test_missing_session_id(self, client, stripe_env):
        response = client.post("/api/verify-payment", json={})
        assert response.status_code == 400
        assert response.json()["error"] == "Session ID is required"

    def test_paid_session_verified(self, client, stripe_env):
        with patch("payment_client.stripe.checkout.Session.retrieve", return_value=_paid_session()):
            response = client.post("/api/verify-payment", json={"sessionId": "cs_test_1"})

        assert response.status_code == 200
        assert response.json() == {"verified": True, "letterId": "letter-42"}

    def test_verification_sets_paid_flag(self, client, stripe_env):
        with patch("payment_client.stripe.checkout.Session.retrieve", return_value=_paid_session()):
            client.post("/api/verify-payment", json={"sessionId": "cs_test_1", "clientId": "client-5"})

        record = paid_storage.load_paid_record("client-5")
        assert record["paid"] is True
        assert record["session_id"] == "cs_test_1"
        assert record["letter_id"] == "letter-42"

    def test_invalid_client_id_rejected_before_verification(self, client, stripe_env):
        """A bad client id is refused before any payment lookup."""
        with patch("payment_client.stripe.checkout.Session.retrieve", return_value=_paid_session()) as mock_retrieve:
            response = client.post("/api/verify-payment", json={"sessionId": "cs_test_1", "clientId": "../etc"})

        assert response.status_code == 400
        assert "client id" in response.json()["error"]
        mock_retrieve.assert_not_called()

    def test_unpaid_session(self, client, stripe_env):
        session = SimpleNamespace(payment_status="unpaid", metadata=None)
        with patch("payment_client.stripe.checkout.Session.retrieve", return_value=session):
            response = client.post("/api/verify-payment", json={"sessionId": "cs_test_1", "clientId": "client-6"})

        assert response.status_code == 400
        assert response.json() == {"verified": False}
        assert not paid_storage.is_paid("client-6")

    def test_invalid_session(self, client, stripe_env):
        error = stripe.InvalidRequestError("No such checkout.session", param="id", http_status=404)
        with patch("payment_client.stripe.checkout.Session.retrieve", side_effect=error):
            response = client.post("/api/verify-payment", json={"sessionId": "cs_bad"})

        assert response.status_code == 400
        assert response.json()["verified"] is False

    def test_missing_configuration(self, client):
        with patch("server.StripePaymentClient", side_effect=PaymentConfigError("STRIPE_SECRET_KEY is not configured")):
            response = client.post("/api/verify-payment", json={"sessionId": "cs_test_1"})

        assert response.status_code == 500
