import json
import time

import pytest

from avocat.ledger import PurchaseLedger
from avocat.models import ARTIFACT_KINDS, ItemStatus, PurchaseStatus
from avocat.users import UNKNOWN_USER_ID
from avocat.webhook import (
    DUPLICATE, IGNORED, PROCESSED, InvalidSignature, WebhookProcessor, is_eligible, jurisdiction_name, parse_cart,
)

from conftest import WEBHOOK_SECRET, checkout_event, sign_payload


def post_event(client, payload, signature=None):
    return client.post(
        "/stripe/webhook",
        data=payload,
        headers={"Stripe-Signature": signature or sign_payload(payload), "Content-Type": "application/json"},
    )


def test_paid_checkout_creates_and_completes_purchase(client, services):
    services.users.collection.insert_one({"_id": "user-1", "email": "A@B.com", "emailLower": "a@b.com"})

    response = post_event(client, checkout_event())

    assert response.status_code == 200
    body = response.get_json()
    assert body["received"] is True
    assert body["status"] == PROCESSED

    entry = services.ledger.get(body["purchaseId"])
    assert entry.user_id == "user-1"
    assert entry.external_transaction_id == "cs_test_123"
    assert entry.total_amount == 500
    assert entry.status == PurchaseStatus.COMPLETED
    assert len(entry.items) == 1
    item = entry.items[0]
    assert (item.name, item.area, item.jurisdiction) == ("Demanda X", "Civil", "España")
    assert item.status == ItemStatus.COMPLETED
    assert set(item.artifact_set) == set(ARTIFACT_KINDS)
    for artifact in item.artifact_set.values():
        assert artifact.storage_path.startswith("users/user-1/documents/")
        assert services.store.exists(artifact.storage_path)


def test_unmatched_email_is_recorded_as_unknown(client, services):
    body = post_event(client, checkout_event(customer_email="nobody@example.com")).get_json()
    assert services.ledger.get(body["purchaseId"]).user_id == UNKNOWN_USER_ID


def test_metadata_user_id_takes_precedence(client, services):
    body = post_event(client, checkout_event(user_id="user-42")).get_json()
    assert services.ledger.get(body["purchaseId"]).user_id == "user-42"


def test_replayed_event_is_a_no_op(client, services):
    payload = checkout_event()
    first = post_event(client, payload).get_json()
    artifact_ids = services.ledger.get(first["purchaseId"]).artifact_ids()

    for _ in range(2):
        replay = post_event(client, payload)
        assert replay.status_code == 200
        assert replay.get_json() == {"received": True, "status": DUPLICATE, "purchaseId": first["purchaseId"]}

    assert services.ledger.count() == 1
    assert services.ledger.get(first["purchaseId"]).artifact_ids() == artifact_ids


@pytest.mark.parametrize("overrides", [
    {"mode": "subscription"},
    {"payment_status": "unpaid"},
    {"event_type": "checkout.session.expired"},
])
def test_ineligible_events_are_acknowledged_without_side_effects(client, services, overrides):
    response = post_event(client, checkout_event(**overrides))

    assert response.status_code == 200
    assert response.get_json() == {"received": True, "status": IGNORED}
    assert services.ledger.count() == 0


def test_tampered_body_is_rejected(client, services):
    payload = checkout_event()
    signature = sign_payload(payload)
    tampered = payload.replace('"amount_total": 500', '"amount_total": 1')

    response = post_event(client, tampered, signature=signature)

    assert response.status_code == 400
    assert response.get_json() == {"error": "Invalid signature"}
    assert services.ledger.count() == 0


def test_wrong_secret_and_stale_signatures_are_rejected(client, services):
    payload = checkout_event()
    assert post_event(client, payload, signature=sign_payload(payload, secret="whsec_other")).status_code == 400
    stale = sign_payload(payload, timestamp=int(time.time()) - 3600)
    assert post_event(client, payload, signature=stale).status_code == 400
    assert services.ledger.count() == 0


def test_missing_signature_header_is_rejected(client, services):
    response = client.post("/stripe/webhook", data=checkout_event())
    assert response.status_code == 400
    assert services.ledger.count() == 0


def test_unconfigured_secret_fails_loudly(client, services, monkeypatch):
    monkeypatch.setattr(services.webhooks, "webhook_secret", None)
    assert post_event(client, checkout_event()).status_code == 500
    assert services.ledger.count() == 0


def test_cart_without_items_fails_the_purchase(client, services):
    body = post_event(client, checkout_event(items=[])).get_json()
    entry = services.ledger.get(body["purchaseId"])
    assert entry.items == []
    assert entry.status == PurchaseStatus.FAILED


def test_concurrent_insert_is_treated_as_duplicate(services):
    class RacingLedger(PurchaseLedger):
        def find_by_external_transaction_id(self, external_transaction_id):
            return None

    ledger = RacingLedger(services.ledger.collection)
    processor = WebhookProcessor(WEBHOOK_SECRET, ledger, services.users, services.orchestrator)
    payload = checkout_event()

    assert processor.handle_incoming_event(payload, sign_payload(payload)).status == PROCESSED
    assert processor.handle_incoming_event(payload, sign_payload(payload)).status == DUPLICATE
    assert services.ledger.count() == 1


def test_processed_purchase_is_announced(services):
    announced = []

    class RecordingNotifier:
        def purchase_processed(self, entry):
            announced.append(entry)

    processor = WebhookProcessor(WEBHOOK_SECRET, services.ledger, services.users, services.orchestrator,
                                 notifier=RecordingNotifier())
    payload = checkout_event()
    ack = processor.handle_incoming_event(payload.encode("utf-8"), sign_payload(payload))

    assert [entry.id for entry in announced] == [ack.purchase_id]
    assert announced[0].status == PurchaseStatus.COMPLETED


def test_verify_does_not_leak_details(services):
    with pytest.raises(InvalidSignature) as excinfo:
        services.webhooks.verify(checkout_event(), "t=1,v1=deadbeef")
    assert str(excinfo.value) == "Invalid signature"
    assert excinfo.value.__cause__ is None


def test_is_eligible():
    session = {"mode": "payment", "payment_status": "paid"}
    assert is_eligible("checkout.session.completed", session)
    assert not is_eligible("checkout.session.completed", dict(session, mode="setup"))
    assert not is_eligible("payment_intent.succeeded", session)


def test_parse_cart_defaults_and_country_codes():
    items = parse_cart(json.dumps([
        {"name": "Recurso", "price": 900},
        {"id": "x1", "name": "Contrato", "price": 1500, "quantity": 2, "area": "Mercantil", "country": "ES"},
    ]))

    assert [item.name for item in items] == ["Recurso", "Contrato"]
    assert items[0].quantity == 1
    assert items[0].area == "Derecho General"
    assert items[0].jurisdiction == "España"
    assert items[1].id == "x1"
    assert items[1].quantity == 2
    assert items[1].unit_price == 1500
    assert items[1].jurisdiction == "Spain"


def test_parse_cart_records_malformed_entries_as_failed():
    items = parse_cart(json.dumps([
        {"price": 100},
        "not an object",
        {"name": "Bad quantity", "quantity": "many", "price": 300},
        {"name": "Ok"},
    ]))

    assert [item.name for item in items] == ["Item 1", "Item 2", "Bad quantity", "Ok"]
    assert [item.status for item in items] == [
        ItemStatus.FAILED, ItemStatus.FAILED, ItemStatus.FAILED, ItemStatus.PENDING,
    ]
    assert items[0].error == "Invalid cart entry: missing name"
    assert items[0].unit_price == 100
    assert items[1].error.startswith("Invalid cart entry: expected an object")
    assert items[2].error.startswith("Invalid cart entry:")
    assert items[2].unit_price == 300
    assert not any(item.retryable for item in items[:3])
    assert parse_cart("{not json") == []
    assert parse_cart(json.dumps({"name": "not a list"})) == []
    assert parse_cart(None) == []


def test_unparseable_cart_entry_is_kept_as_failed_item(client, services):
    payload = checkout_event(amount_total=1200, items=[
        {"name": "Demanda X", "price": 500, "quantity": 1, "area": "Civil", "country": "España"},
        {"name": "Contrato Y", "price": 700, "quantity": None, "area": "Mercantil", "country": "España"},
    ])

    body = post_event(client, payload).get_json()

    entry = services.ledger.get(body["purchaseId"])
    assert [item.name for item in entry.items] == ["Demanda X", "Contrato Y"]
    assert [item.status for item in entry.items] == [ItemStatus.COMPLETED, ItemStatus.FAILED]
    assert entry.items[1].error.startswith("Invalid cart entry:")
    assert entry.items[1].unit_price == 700
    assert entry.status == PurchaseStatus.COMPLETED
    assert (entry.documents_generated, entry.documents_failed) == (1, 1)

    services.sweep.reprocess_purchase(entry)

    swept = services.ledger.get(entry.id)
    assert swept.items[1].status == ItemStatus.FAILED
    assert swept.items[1].generated_units == []
    assert swept.documents_failed == 1


def test_jurisdiction_name():
    assert jurisdiction_name("") == "España"
    assert jurisdiction_name("fr") == "France"
    assert jurisdiction_name("Cataluña") == "Cataluña"
    assert jurisdiction_name("ZZ") == "ZZ"
