"""
Purchase ledger backed by a MongoDB collection.

One document per checkout transaction. Writes always replace the whole
``items`` array, so the single writer of an entry never sends partial patches.
"""
import logging
import uuid

from pymongo import DESCENDING
from pymongo.errors import DuplicateKeyError

from .models import PurchaseLedgerEntry, PurchaseStatus, utcnow

logger = logging.getLogger(__name__)


class DuplicatePurchase(Exception):
    """A ledger entry already exists for the external transaction id."""


class PurchaseNotFound(LookupError):
    pass


class PurchaseLedger:
    def __init__(self, collection):
        self.collection = collection

    def ensure_indexes(self):
        self.collection.create_index("externalTransactionId", unique=True)
        self.collection.create_index("userId")
        self.collection.create_index("status")
        self.collection.create_index("artifactIds")

    def create_pending_entry(self, external_transaction_id, user_id, customer_email, items, total_amount, currency,
                             payment_intent_id=None, source="stripe_webhook"):
        entry = PurchaseLedgerEntry(
            id=str(uuid.uuid4()),
            external_transaction_id=external_transaction_id,
            user_id=user_id,
            customer_email=customer_email,
            items=list(items),
            total_amount=total_amount,
            currency=currency,
            status=PurchaseStatus.PENDING,
            source=source,
            payment_intent_id=payment_intent_id,
        )
        try:
            self.collection.insert_one(entry.to_document())
        except DuplicateKeyError as e:
            raise DuplicatePurchase(external_transaction_id) from e
        logger.info(f"Created purchase {entry.id} for transaction {external_transaction_id} ({len(entry.items)} items)")
        return entry

    def update_items(self, purchase_id, items, status, documents_generated=None, documents_failed=None, **fields):
        """Replace the items snapshot and purchase status of an entry."""
        update = {
            "items": [item.to_dict() for item in items],
            "status": PurchaseStatus(status).value,
            "artifactIds": [artifact.artifact_id for item in items for _, artifact in item.iter_artifacts()],
            "updatedAt": utcnow(),
        }
        if documents_generated is not None:
            update["documentsGenerated"] = documents_generated
        if documents_failed is not None:
            update["documentsFailed"] = documents_failed
        update.update(fields)

        result = self.collection.update_one({"_id": purchase_id}, {"$set": update})
        if result.matched_count == 0:
            raise PurchaseNotFound(purchase_id)

    def get(self, purchase_id):
        doc = self.collection.find_one({"_id": purchase_id})
        return PurchaseLedgerEntry.from_document(doc) if doc else None

    def find_by_external_transaction_id(self, external_transaction_id):
        doc = self.collection.find_one({"externalTransactionId": external_transaction_id})
        return PurchaseLedgerEntry.from_document(doc) if doc else None

    def find_by_artifact_id(self, artifact_id):
        doc = self.collection.find_one({"artifactIds": artifact_id})
        return PurchaseLedgerEntry.from_document(doc) if doc else None

    def find_by_user(self, user_id):
        cursor = self.collection.find({"userId": user_id}).sort("createdAt", DESCENDING)
        return [PurchaseLedgerEntry.from_document(doc) for doc in cursor]

    def find(self, status=None):
        query = {} if status is None else {"status": PurchaseStatus(status).value}
        cursor = self.collection.find(query).sort("createdAt", DESCENDING)
        return [PurchaseLedgerEntry.from_document(doc) for doc in cursor]

    def count(self, status=None):
        query = {} if status is None else {"status": PurchaseStatus(status).value}
        return self.collection.count_documents(query)
