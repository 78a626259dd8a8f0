"""
Read side of the ledger: what a buyer can see and download.

Everything is sourced from the artifacts recorded on the purchase; storage
paths are never rebuilt from ids. Links are re-signed on every read because
the ones stored at generation time expire.
"""
from dataclasses import dataclass
from datetime import datetime, timezone

from .ledger import PurchaseNotFound
from .models import ARTIFACT_KINDS


class DocumentNotFound(LookupError):
    pass


@dataclass
class DownloadedArtifact:
    data: bytes
    content_type: str
    file_name: str
    display_name: str
    owner_id: str


def _isoformat(value):
    if isinstance(value, datetime):
        # Stored datetimes are UTC even when the driver hands them back naive
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.isoformat()
    return value


class DocumentQueries:
    def __init__(self, ledger, store):
        self.ledger = ledger
        self.store = store

    def _artifact_view(self, artifact):
        return {
            "documentId": artifact.artifact_id,
            "downloadUrl": self.store.signed_url(artifact.storage_path),
            "contentType": artifact.content_type,
            "fileName": artifact.file_name,
            "displayName": artifact.display_name,
            "size": artifact.size,
        }

    def _artifact_set_view(self, artifacts):
        # Absent slots are left out; absence is how a missing document shows
        return {kind: self._artifact_view(artifacts[kind]) for kind in ARTIFACT_KINDS if kind in artifacts}

    def summarize(self, entry):
        return {
            "purchaseId": entry.id,
            "userId": entry.user_id,
            "status": entry.status.value,
            "totalAmount": entry.total_amount,
            "currency": entry.currency,
            "documentsGenerated": entry.documents_generated,
            "documentsFailed": entry.documents_failed,
            "createdAt": _isoformat(entry.created_at),
            "itemCount": len(entry.items),
        }

    def list_artifacts(self, purchase_id):
        entry = self.ledger.get(purchase_id)
        if entry is None:
            raise PurchaseNotFound(purchase_id)

        items = []
        for item in entry.items:
            units = item.generated_units
            items.append({
                "id": item.id,
                "name": item.name,
                "area": item.area,
                "jurisdiction": item.jurisdiction,
                "quantity": item.quantity,
                "status": item.status.value,
                "error": item.error,
                "documentId": units[0].document_id if units else None,
                "artifacts": self._artifact_set_view(item.artifact_set),
                "units": [{
                    "documentId": unit.document_id,
                    "generatedAt": _isoformat(unit.generated_at),
                    "artifacts": self._artifact_set_view(unit.artifacts),
                } for unit in units],
            })
        return dict(self.summarize(entry), items=items)

    def download_artifact(self, document_id):
        entry = self.ledger.find_by_artifact_id(document_id)
        found = entry.find_artifact(document_id) if entry else None
        if found is None:
            raise DocumentNotFound(document_id)
        _, _, artifact = found
        if not self.store.exists(artifact.storage_path):
            raise DocumentNotFound(document_id)
        return DownloadedArtifact(
            data=self.store.read(artifact.storage_path),
            content_type=artifact.content_type,
            file_name=artifact.file_name or artifact.storage_path.rsplit("/", 1)[-1],
            display_name=artifact.display_name or artifact.file_name or document_id,
            owner_id=entry.user_id,
        )
