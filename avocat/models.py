"""
Purchase ledger records.

A purchase owns its line items, a line item owns the units generated for it and
each unit references up to five stored artifacts. Everything is embedded in the
purchase document, so the classes here convert to and from the camelCase layout
stored in MongoDB.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional, Union

TEMPLATE_PDF = "templatePdf"
TEMPLATE_DOCX = "templateDocx"
SAMPLE_PDF = "samplePdf"
SAMPLE_DOCX = "sampleDocx"
STUDY_MATERIAL_PDF = "studyMaterialPdf"

ARTIFACT_KINDS = (TEMPLATE_PDF, TEMPLATE_DOCX, SAMPLE_PDF, SAMPLE_DOCX, STUDY_MATERIAL_PDF)

# Order in which a unit's primary document is picked
REPRESENTATIVE_KINDS = (STUDY_MATERIAL_PDF, SAMPLE_PDF, TEMPLATE_PDF)

DEFAULT_AREA = "Derecho General"
DEFAULT_JURISDICTION = "España"


def utcnow():
    return datetime.now(timezone.utc)


class ItemStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class PurchaseStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class Artifact:
    artifact_id: str
    storage_path: str
    download_url: str
    content_type: str
    size: int = 0
    file_name: Optional[str] = None
    display_name: Optional[str] = None

    def to_dict(self):
        return {
            "artifactId": self.artifact_id,
            "storagePath": self.storage_path,
            "downloadUrl": self.download_url,
            "contentType": self.content_type,
            "size": self.size,
            "fileName": self.file_name,
            "displayName": self.display_name,
        }

    @classmethod
    def from_dict(cls, data):
        return cls(
            artifact_id=data["artifactId"],
            storage_path=data["storagePath"],
            download_url=data.get("downloadUrl") or "",
            content_type=data.get("contentType") or "application/octet-stream",
            size=data.get("size") or 0,
            file_name=data.get("fileName"),
            display_name=data.get("displayName"),
        )


def _artifacts_to_dict(artifacts):
    return {kind: artifact.to_dict() for kind, artifact in artifacts.items()}


def _artifacts_from_dict(data):
    return {kind: Artifact.from_dict(value) for kind, value in (data or {}).items() if kind in ARTIFACT_KINDS and value}


def representative_artifact(artifacts: Dict[str, Artifact]) -> Optional[Artifact]:
    """Pick the primary document of a unit: study material, then sample, then template."""
    for kind in REPRESENTATIVE_KINDS:
        if kind in artifacts:
            return artifacts[kind]
    return None


@dataclass
class GeneratedUnit:
    artifacts: Dict[str, Artifact] = field(default_factory=dict)
    generated_at: datetime = field(default_factory=utcnow)

    @property
    def representative(self):
        return representative_artifact(self.artifacts)

    @property
    def document_id(self):
        primary = self.representative
        return primary.artifact_id if primary else None

    @property
    def storage_path(self):
        primary = self.representative
        return primary.storage_path if primary else None

    @property
    def download_url(self):
        primary = self.representative
        return primary.download_url if primary else None

    def to_dict(self):
        return {
            "documentId": self.document_id,
            "storagePath": self.storage_path,
            "downloadUrl": self.download_url,
            "generatedAt": self.generated_at,
            "artifactSet": _artifacts_to_dict(self.artifacts),
        }

    @classmethod
    def from_dict(cls, data):
        return cls(
            artifacts=_artifacts_from_dict(data.get("artifactSet")),
            generated_at=data.get("generatedAt") or utcnow(),
        )


# Item outcomes. "Completed" means every unit was attempted, not that every
# artifact exists; inspect the artifact sets to know what is downloadable.

@dataclass(frozen=True)
class Pending:
    status = ItemStatus.PENDING


@dataclass
class Completed:
    units: List[GeneratedUnit]
    status = ItemStatus.COMPLETED


@dataclass
class Failed:
    reason: str
    # False when generating again cannot succeed (bad cart data, invalid quantity)
    retryable: bool = True
    status = ItemStatus.FAILED


ItemOutcome = Union[Pending, Completed, Failed]


@dataclass
class LineItem:
    id: str
    name: str
    area: str = DEFAULT_AREA
    jurisdiction: str = DEFAULT_JURISDICTION
    unit_price: int = 0
    quantity: int = 1
    outcome: ItemOutcome = field(default_factory=Pending)

    @property
    def status(self) -> ItemStatus:
        return self.outcome.status

    @property
    def generated_units(self) -> List[GeneratedUnit]:
        if isinstance(self.outcome, Completed):
            return self.outcome.units
        return []

    @property
    def artifact_set(self) -> Dict[str, Artifact]:
        units = self.generated_units
        return units[0].artifacts if units else {}

    @property
    def error(self):
        if isinstance(self.outcome, Failed):
            return self.outcome.reason
        return None

    @property
    def retryable(self):
        return not isinstance(self.outcome, Failed) or self.outcome.retryable

    def missing_kinds(self):
        artifacts = self.artifact_set
        return [kind for kind in ARTIFACT_KINDS if kind not in artifacts or not artifacts[kind].download_url]

    def is_fully_satisfied(self):
        """True when the item is completed and all five artifact slots exist."""
        return self.status == ItemStatus.COMPLETED and not self.missing_kinds()

    def with_outcome(self, outcome):
        return LineItem(
            id=self.id,
            name=self.name,
            area=self.area,
            jurisdiction=self.jurisdiction,
            unit_price=self.unit_price,
            quantity=self.quantity,
            outcome=outcome,
        )

    def iter_artifacts(self):
        for unit in self.generated_units:
            for kind, artifact in unit.artifacts.items():
                yield kind, artifact

    def to_dict(self):
        data = {
            "id": self.id,
            "name": self.name,
            "area": self.area,
            "jurisdiction": self.jurisdiction,
            "price": self.unit_price,
            "quantity": self.quantity,
            "status": self.status.value,
        }
        units = self.generated_units
        if isinstance(self.outcome, Completed):
            first = units[0] if units else None
            data.update({
                "artifactSet": _artifacts_to_dict(self.artifact_set),
                "documentId": first.document_id if first else None,
                "storagePath": first.storage_path if first else None,
                "downloadUrl": first.download_url if first else None,
                "generatedUnits": [unit.to_dict() for unit in units],
            })
        if isinstance(self.outcome, Failed):
            data["error"] = self.outcome.reason
            if not self.outcome.retryable:
                data["retryable"] = False
        return data

    @classmethod
    def from_dict(cls, data):
        status = data.get("status") or ItemStatus.PENDING.value
        if status == ItemStatus.COMPLETED.value:
            outcome = Completed([GeneratedUnit.from_dict(unit) for unit in data.get("generatedUnits") or []])
        elif status == ItemStatus.FAILED.value:
            outcome = Failed(data.get("error") or "Unknown error", retryable=data.get("retryable", True))
        else:
            outcome = Pending()
        return cls(
            id=data["id"],
            name=data["name"],
            area=data.get("area") or DEFAULT_AREA,
            jurisdiction=data.get("jurisdiction") or data.get("country") or DEFAULT_JURISDICTION,
            unit_price=data.get("price", 0),
            quantity=data.get("quantity", 1),
            outcome=outcome,
        )


@dataclass
class Rollup:
    status: PurchaseStatus
    documents_generated: int
    documents_failed: int


def rollup(items: List[LineItem]) -> Rollup:
    """
    Purchase-level status from the item outcomes.

    One completed item makes the whole purchase completed; it only fails when
    every item failed.
    """
    generated = sum(1 for item in items if item.status == ItemStatus.COMPLETED)
    failed = sum(1 for item in items if item.status == ItemStatus.FAILED)
    if generated > 0:
        status = PurchaseStatus.COMPLETED
    elif failed == len(items):
        status = PurchaseStatus.FAILED
    else:
        status = PurchaseStatus.PENDING
    return Rollup(status=status, documents_generated=generated, documents_failed=failed)


@dataclass
class PurchaseLedgerEntry:
    id: str
    external_transaction_id: str
    user_id: str
    customer_email: str
    items: List[LineItem]
    total_amount: int
    currency: str
    status: PurchaseStatus = PurchaseStatus.PENDING
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    source: str = "stripe_webhook"
    payment_intent_id: Optional[str] = None
    documents_generated: int = 0
    documents_failed: int = 0
    webhook_processed_at: Optional[datetime] = None
    reprocessed_at: Optional[datetime] = None

    def artifact_ids(self):
        return [artifact.artifact_id for item in self.items for _, artifact in item.iter_artifacts()]

    def find_artifact(self, artifact_id):
        """Return (item, kind, artifact) for an artifact id, or None."""
        for item in self.items:
            for kind, artifact in item.iter_artifacts():
                if artifact.artifact_id == artifact_id:
                    return item, kind, artifact
        return None

    def to_document(self):
        return {
            "_id": self.id,
            "externalTransactionId": self.external_transaction_id,
            "userId": self.user_id,
            "customerEmail": self.customer_email,
            "items": [item.to_dict() for item in self.items],
            "totalAmount": self.total_amount,
            "currency": self.currency,
            "status": self.status.value,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "source": self.source,
            "paymentIntentId": self.payment_intent_id,
            "documentsGenerated": self.documents_generated,
            "documentsFailed": self.documents_failed,
            "webhookProcessedAt": self.webhook_processed_at,
            "reprocessedAt": self.reprocessed_at,
            "artifactIds": self.artifact_ids(),
        }

    @classmethod
    def from_document(cls, doc):
        return cls(
            id=doc["_id"],
            external_transaction_id=doc["externalTransactionId"],
            user_id=doc.get("userId") or "unknown",
            customer_email=doc.get("customerEmail") or "",
            items=[LineItem.from_dict(item) for item in doc.get("items") or []],
            total_amount=doc.get("totalAmount") or 0,
            currency=doc.get("currency") or "eur",
            status=PurchaseStatus(doc.get("status") or PurchaseStatus.PENDING.value),
            created_at=doc.get("createdAt") or utcnow(),
            updated_at=doc.get("updatedAt") or utcnow(),
            source=doc.get("source") or "stripe_webhook",
            payment_intent_id=doc.get("paymentIntentId"),
            documents_generated=doc.get("documentsGenerated") or 0,
            documents_failed=doc.get("documentsFailed") or 0,
            webhook_processed_at=doc.get("webhookProcessedAt"),
            reprocessed_at=doc.get("reprocessedAt"),
        )
