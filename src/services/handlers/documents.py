"""Handlers for KYC_VERIFICATION and DOCUMENT_UPLOAD nodes."""

import logging
from typing import Any

from models.definition import WorkflowNode
from models.outcome import HandlerResult
from services.collaborators import DocumentGateway, MessagingGateway
from services.effect_ledger import RedisEffectLedger
from services.handlers.base import BaseHandler
from services.template_resolver import find_unresolved

logger = logging.getLogger(__name__)


def kyc_status(
    documents: list[dict[str, Any]], required: list[str]
) -> tuple[str, list[dict[str, Any]], list[str]]:
    """Overall KYC status with the approved documents and missing types."""
    approved = [d for d in documents if d.get("status") == "APPROVED"]
    approved_types = {d.get("document_type") for d in approved}
    missing = [t for t in required if t not in approved_types]

    if not missing:
        return "APPROVED", approved, []
    if documents:
        return "PENDING", approved, missing
    return "NOT_STARTED", [], list(required)


class KycVerificationHandler(BaseHandler):
    """Checks a customer's KYC documents and optionally blocks until complete."""

    def __init__(
        self,
        documents: DocumentGateway,
        messaging: MessagingGateway | None = None,
        ledger: RedisEffectLedger | None = None,
    ):
        super().__init__(ledger)
        if documents is None:
            raise ValueError("documents is required")
        self._documents = documents
        self._messaging = messaging

    def execute(
        self, node: WorkflowNode, instance_id: str, context: dict[str, Any]
    ) -> HandlerResult:
        config = self.resolved_config(node, context)
        customer_id = config.get("customerId")
        if not customer_id or find_unresolved(customer_id):
            return HandlerResult.fail("Customer ID not found in context")

        required = list(config.get("requiredDocuments") or [])
        documents = self._documents.list_documents(str(customer_id), required)
        status, approved, missing = kyc_status(documents, required)
        logger.info(
            f"KYC status for customer {customer_id}: {status}, missing {missing}"
        )

        if status == "APPROVED":
            return HandlerResult.ok({"kycStatus": status, "documents": approved})

        data: dict[str, Any] = {"kycStatus": status, "missingDocuments": missing}
        if status == "NOT_STARTED" and config.get("sendReminder") and self._messaging:
            self.once(
                instance_id,
                node.id,
                "reminder",
                lambda: self._messaging.send_message(
                    "notification",
                    {
                        "to": config.get("remindTo") or str(customer_id),
                        "message": f"KYC documents required: {', '.join(missing)}",
                        "customer_id": str(customer_id),
                        "workflow_instance_id": instance_id,
                    },
                ),
            )
            data["reminderSent"] = True
            logger.info(f"KYC reminder sent for customer {customer_id}")

        if config.get("blockIfIncomplete"):
            message = (
                "Waiting for KYC document verification"
                if status == "PENDING"
                else "Waiting for KYC document upload"
            )
            return HandlerResult.wait({**data, "message": message})
        return HandlerResult.ok(data)


class DocumentUploadHandler(BaseHandler):
    """Continues once the requested document is uploaded and approved."""

    def __init__(self, documents: DocumentGateway):
        super().__init__()
        if documents is None:
            raise ValueError("documents is required")
        self._documents = documents

    def execute(
        self, node: WorkflowNode, instance_id: str, context: dict[str, Any]
    ) -> HandlerResult:
        config = self.resolved_config(node, context)
        document_type = config.get("documentType")
        if not document_type:
            return HandlerResult.fail("documentType is required")

        entity_id = config.get("entityId")
        if not entity_id or find_unresolved(entity_id):
            return HandlerResult.fail("Entity ID not found in context")

        matches = self._documents.list_documents(str(entity_id), [document_type])
        document = matches[0] if matches else None

        if document is not None and document.get("status") == "APPROVED":
            return HandlerResult.ok(document)

        if document is None and config.get("required"):
            return HandlerResult.wait(
                {
                    "message": "Waiting for document upload",
                    "documentType": document_type,
                    "allowedFormats": config.get("allowedFormats"),
                    "maxSizeMB": config.get("maxSizeMB"),
                }
            )

        if document is not None and document.get("status") == "PENDING":
            return HandlerResult.wait(
                {
                    "message": "Waiting for document verification",
                    "documentId": document.get("id"),
                    "status": document.get("status"),
                }
            )

        return HandlerResult.ok({"status": "NOT_REQUIRED"})
