import hashlib
import hmac
import json
import time

import mongomock
import pytest

from avocat import create_app
from avocat.content import (
    CompletionClient, CompletionError, ContentGenerator, RetryPolicy, StubProvider,
)
from avocat.ledger import PurchaseLedger
from avocat.models import LineItem
from avocat.orchestrator import GenerationOrchestrator
from avocat.storage import ArtifactStore
from avocat.users import UserDirectory

WEBHOOK_SECRET = "whsec_test_secret"
BASE_URL = "http://testserver"


def sign_payload(payload, secret=WEBHOOK_SECRET, timestamp=None):
    """Build a Stripe-Signature header for `payload`."""
    timestamp = int(time.time()) if timestamp is None else timestamp
    signature = hmac.new(secret.encode("utf-8"), f"{timestamp}.{payload}".encode("utf-8"), hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def checkout_event(session_id="cs_test_123", mode="payment", payment_status="paid", items=None,
                   customer_email="a@b.com", user_id=None, event_type="checkout.session.completed",
                   amount_total=500):
    if items is None:
        items = [{"name": "Demanda X", "price": 500, "quantity": 1, "area": "Civil", "country": "España"}]
    metadata = {"items": json.dumps(items), "totalItems": str(len(items))}
    if user_id is not None:
        metadata["userId"] = user_id
    return json.dumps({
        "id": f"evt_{session_id}",
        "type": event_type,
        "data": {
            "object": {
                "id": session_id,
                "object": "checkout.session",
                "mode": mode,
                "payment_status": payment_status,
                "customer_email": customer_email,
                "amount_total": amount_total,
                "currency": "eur",
                "payment_intent": f"pi_{session_id}",
                "metadata": metadata,
            }
        },
    })


class ScriptedGenerator:
    """Returns canned text; raises for the variants or document names it is told to."""

    def __init__(self, fail_variants=(), fail_names=()):
        self.fail_variants = set(fail_variants)
        self.fail_names = set(fail_names)
        self.calls = []

    def generate(self, variant, document_name, area, jurisdiction):
        self.calls.append((variant, document_name))
        if variant in self.fail_variants or document_name in self.fail_names:
            raise CompletionError(f"{variant} unavailable")
        return f"{document_name.upper()}\n\nI. HECHOS\nTexto de {variant} para {area} ({jurisdiction})."


class FakeRenderer:
    """Produces small placeholder files; can fail the Word rendering of some variants."""

    def __init__(self, fail_docx_variants=()):
        self.fail_docx_variants = set(fail_docx_variants)

    def pdf(self, content, title, area, jurisdiction, variant):
        return b"%PDF-1.4 " + content.encode("utf-8")

    def docx(self, content, title, area, jurisdiction, variant):
        if variant in self.fail_docx_variants:
            raise RuntimeError(f"docx rendering failed for {variant}")
        return b"PK" + content.encode("utf-8")


@pytest.fixture
def app(tmp_path):
    app = create_app(
        {
            "TESTING": True,
            "SECRET_KEY": "test-secret-key",
            "STRIPE_SECRET_KEY": None,
            "OPENAI_API_KEY": None,
            "STRIPE_WEBHOOK_SECRET": WEBHOOK_SECRET,
            "STORAGE_ROOT": str(tmp_path / "storage"),
            "PUBLIC_BASE_URL": BASE_URL,
            "RATELIMIT_ENABLED": False,
            "OPENAI_MAX_ATTEMPTS": 1,
            "OPENAI_RETRY_DELAY": 0,
            "OPENAI_STUB_FALLBACK": False,
            "ADMIN_BOOTSTRAP_UIDS": [],
            "GOOGLE_CHAT_WEBHOOK_URL": None,
            "SMTP_SERVER": None,
            "SMTP_USER": None,
            "SMTP_PASS": None,
        },
        mongo_client=mongomock.MongoClient(),
        completion_provider=StubProvider(),
    )
    return app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def services(app):
    return app.extensions["avocat"]


@pytest.fixture
def mongo_db():
    return mongomock.MongoClient()["avocat-test"]


@pytest.fixture
def ledger(mongo_db):
    ledger = PurchaseLedger(mongo_db["purchases"])
    ledger.ensure_indexes()
    return ledger


@pytest.fixture
def users(mongo_db):
    directory = UserDirectory(mongo_db["users"], bootstrap_admin_uids=["bootstrap-admin"])
    directory.ensure_indexes()
    return directory


@pytest.fixture
def store(tmp_path):
    return ArtifactStore(str(tmp_path / "blobs"), "test-secret-key", BASE_URL)


@pytest.fixture
def no_sleep_policy():
    delays = []
    return RetryPolicy(max_attempts=3, initial_delay=1.0, backoff=2.0, sleep=delays.append), delays


@pytest.fixture
def stub_generator():
    return ContentGenerator(CompletionClient(StubProvider(), retry_policy=RetryPolicy(max_attempts=1)))


@pytest.fixture
def make_orchestrator(store, ledger):
    def factory(generator=None, renderer=None, cls=GenerationOrchestrator, **kwargs):
        return cls(generator or ScriptedGenerator(), store, ledger, renderer=renderer or FakeRenderer(), **kwargs)
    return factory


@pytest.fixture
def make_entry(ledger):
    counter = {"n": 0}

    def factory(*items, user_id="user-1"):
        counter["n"] += 1
        if not items:
            items = (LineItem(id="item-1", name="Demanda de desahucio", area="Civil", unit_price=500),)
        return ledger.create_pending_entry(
            f"cs_test_{counter['n']}", user_id, "a@b.com", list(items),
            total_amount=sum(item.unit_price * item.quantity for item in items), currency="eur",
        )
    return factory




@pytest.fixture
def paid_purchase(client, services):
    """A purchase for user-1 that went through the webhook."""
    payload = checkout_event(user_id="user-1")
    response = client.post("/stripe/webhook", data=payload, headers={"Stripe-Signature": sign_payload(payload)})
    assert response.status_code == 200
    return services.ledger.get(response.get_json()["purchaseId"])


@pytest.fixture
def admin_uid(services):
    services.users.collection.insert_one({"_id": "admin-1", "email": "admin@avocat.test", "role": "admin",
                                          "isActive": True})
    return "admin-1"
