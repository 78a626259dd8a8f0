"""
Fan-out generation for paid purchases.

Each line item is expanded into `quantity` generated units; each unit holds a
template (PDF + Word), a sample (PDF + Word) and a study material (PDF only).
Failures are contained at two levels:

* a variant that fails at any step (generate, render, store) leaves its slots
  empty and the unit carries on with the next variant;
* an exception escaping the unit loop marks only that item as failed.

The purchase status is rolled up once every item has been processed.
"""
import logging
import uuid

from werkzeug.utils import secure_filename

from .content import SAMPLE, STUDY_MATERIAL, TEMPLATE, VARIANT_LABELS
from .models import (
    SAMPLE_DOCX, SAMPLE_PDF, STUDY_MATERIAL_PDF, TEMPLATE_DOCX, TEMPLATE_PDF,
    Artifact, Completed, Failed, GeneratedUnit, ItemStatus, rollup, utcnow,
)
from .rendering import DOCX_CONTENT_TYPE, PDF_CONTENT_TYPE, Renderer

logger = logging.getLogger(__name__)

# (variant, PDF slot, Word slot); study material ships as PDF only
VARIANT_SLOTS = (
    (TEMPLATE, TEMPLATE_PDF, TEMPLATE_DOCX),
    (SAMPLE, SAMPLE_PDF, SAMPLE_DOCX),
    (STUDY_MATERIAL, STUDY_MATERIAL_PDF, None),
)

FILE_SUFFIXES = {
    TEMPLATE: "template",
    SAMPLE: "sample",
    STUDY_MATERIAL: "study-material",
}


def slugify(name):
    slug = secure_filename(name).lower().replace("_", "-").strip("-")
    return slug[:50] or "documento"


class GenerationOrchestrator:
    def __init__(self, generator, store, ledger, renderer=None, url_ttl=None):
        self.generator = generator
        self.store = store
        self.ledger = ledger
        self.renderer = renderer or Renderer()
        self.url_ttl = url_ttl

    def generate_for_purchase(self, entry):
        """Generate the pending items of a freshly created purchase."""
        self.process(
            entry,
            should_generate=lambda item: item.status == ItemStatus.PENDING,
            webhookProcessedAt=utcnow(),
        )

    def process(self, entry, should_generate, **fields):
        """
        Run generation for the items selected by `should_generate`, saving the
        item snapshot after each one and the rolled-up status at the end.
        """
        items = list(entry.items)
        for index, item in enumerate(items):
            if not should_generate(item):
                logger.info(f"Skipping item '{item.name}' of purchase {entry.id} ({item.status.value})")
                continue
            items[index] = self.generate_item(entry, item)
            self.ledger.update_items(entry.id, items, entry.status)

        result = rollup(items)
        self.ledger.update_items(
            entry.id, items, result.status,
            documents_generated=result.documents_generated,
            documents_failed=result.documents_failed,
            **fields,
        )
        entry.items = items
        entry.status = result.status
        entry.documents_generated = result.documents_generated
        entry.documents_failed = result.documents_failed
        logger.info(
            f"Purchase {entry.id} {result.status.value}: "
            f"{result.documents_generated} generated, {result.documents_failed} failed"
        )
        return result

    def generate_item(self, entry, item):
        """Return a copy of `item` with its outcome resolved to Completed or Failed."""
        logger.info(f"Generating '{item.name}' x{item.quantity} for purchase {entry.id}")
        if item.quantity < 1:
            reason = f"Invalid quantity {item.quantity} for '{item.name}'"
            logger.error(f"{reason} in purchase {entry.id}")
            return item.with_outcome(Failed(reason, retryable=False))
        try:
            units = [self.generate_unit(entry, item) for _ in range(item.quantity)]
        except Exception as e:
            logger.error(f"Generation failed for item '{item.name}' of purchase {entry.id}: {e}")
            return item.with_outcome(Failed(str(e) or type(e).__name__))

        if not any(unit.artifacts for unit in units):
            logger.warning(f"Item '{item.name}' of purchase {entry.id} completed without any document")
        return item.with_outcome(Completed(units))

    def generate_unit(self, entry, item):
        artifacts = {}
        for variant, pdf_kind, docx_kind in VARIANT_SLOTS:
            artifacts.update(self._generate_variant(entry, item, variant, pdf_kind, docx_kind))
        return GeneratedUnit(artifacts=artifacts, generated_at=utcnow())

    def _generate_variant(self, entry, item, variant, pdf_kind, docx_kind):
        artifacts = {}
        title = f"{item.name} - {VARIANT_LABELS[variant]}"
        try:
            content = self.generator.generate(variant, item.name, item.area, item.jurisdiction)

            pdf = self.renderer.pdf(content, title, item.area, item.jurisdiction, variant)
            artifacts[pdf_kind] = self._save(entry, item, variant, pdf, PDF_CONTENT_TYPE, "pdf")

            if docx_kind is not None:
                docx = self.renderer.docx(content, item.name, item.area, item.jurisdiction, variant)
                artifacts[docx_kind] = self._save(entry, item, variant, docx, DOCX_CONTENT_TYPE, "docx")
        except Exception as e:
            missing = [kind for kind in (pdf_kind, docx_kind) if kind and kind not in artifacts]
            logger.error(
                f"Error generating {variant} for '{item.name}' (purchase {entry.id}); "
                f"missing {', '.join(missing)}: {e}"
            )
        return artifacts

    def _save(self, entry, item, variant, data, content_type, extension):
        artifact_id = str(uuid.uuid4())
        display_name = f"{item.name} - {VARIANT_LABELS[variant]}"
        file_name = f"{slugify(item.name)}-{FILE_SUFFIXES[variant]}.{extension}"
        storage_path = self.store.persist(entry.user_id, artifact_id, data, content_type, metadata={
            "userId": entry.user_id,
            "purchaseId": entry.id,
            "itemId": item.id,
            "documentName": item.name,
            "documentType": variant,
            "documentFormat": extension,
            "area": item.area,
            "jurisdiction": item.jurisdiction,
            "displayName": display_name,
            "fileName": file_name,
            "generatedAt": utcnow().isoformat(),
        })
        return Artifact(
            artifact_id=artifact_id,
            storage_path=storage_path,
            download_url=self.store.signed_url(storage_path, self.url_ttl),
            content_type=content_type,
            size=len(data),
            file_name=file_name,
            display_name=display_name,
        )
