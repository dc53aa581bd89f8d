"""Handlers for CRM_LOOKUP and CRM_UPDATE nodes."""

import logging
from typing import Any

from models.definition import WorkflowNode
from models.outcome import HandlerResult
from services.collaborators import CrmGateway
from services.effect_ledger import RedisEffectLedger
from services.errors import ExternalServiceError
from services.handlers.base import BaseHandler
from services.template_resolver import MISSING, find_unresolved, resolve_path

logger = logging.getLogger(__name__)

LOOKUP_FIELDS = ("email", "phone", "pan", "gstin", "customer_id")


class CrmLookupHandler(BaseHandler):
    """Finds a customer, optionally creating one when none matches."""

    def __init__(self, crm: CrmGateway, ledger: RedisEffectLedger):
        super().__init__(ledger)
        if crm is None:
            raise ValueError("crm is required")
        self._crm = crm

    def execute(
        self, node: WorkflowNode, instance_id: str, context: dict[str, Any]
    ) -> HandlerResult:
        config = self.resolved_config(node, context)
        lookup_by = config.get("lookupBy")
        if lookup_by not in LOOKUP_FIELDS:
            return HandlerResult.fail(f"Unsupported lookupBy: {lookup_by}")

        lookup_value = config.get("lookupValue")
        if not lookup_value or find_unresolved(lookup_value):
            return HandlerResult.fail(f"No value to look up customer by {lookup_by}")

        try:
            customer = self._crm.find_customer(lookup_by, str(lookup_value))
        except ExternalServiceError as e:
            if config.get("onError") == "CONTINUE":
                logger.warning(f"CRM lookup failed for {instance_id}/{node.id}, continuing: {e}")
                return HandlerResult.ok(None)
            raise

        if customer is not None:
            logger.info(f"Customer found by {lookup_by} for {instance_id}/{node.id}")
            return HandlerResult.ok(customer)

        on_not_found = config.get("onNotFound", "CONTINUE")
        if on_not_found == "CREATE" or config.get("createIfNotFound"):
            created = self.once(
                instance_id,
                node.id,
                "customer",
                lambda: self._crm.create_customer(
                    self._new_customer(lookup_by, str(lookup_value), config, context)
                ),
            )
            logger.info(f"Customer created for {instance_id}/{node.id}")
            return HandlerResult.ok(created)

        if on_not_found == "FAIL":
            return HandlerResult.fail(
                f"Customer not found by {lookup_by}: {lookup_value}"
            )
        return HandlerResult.ok(None)

    def _new_customer(
        self,
        lookup_by: str,
        lookup_value: str,
        config: dict[str, Any],
        context: dict[str, Any],
    ) -> dict[str, Any]:
        data: dict[str, Any] = {}
        if lookup_by in ("email", "phone"):
            data[lookup_by] = lookup_value
        for field in config.get("requiredFields") or []:
            value = resolve_path(context, field)
            if value is not MISSING and value is not None:
                data[field.split(".")[-1]] = value
        data.setdefault("tier", "STANDARD")
        data.setdefault("kyc_status", "NOT_STARTED")
        data.setdefault("is_active", True)
        return data


class CrmUpdateHandler(BaseHandler):
    """Applies templated updates to a customer record."""

    def __init__(self, crm: CrmGateway, ledger: RedisEffectLedger):
        super().__init__(ledger)
        if crm is None:
            raise ValueError("crm is required")
        self._crm = crm

    def execute(
        self, node: WorkflowNode, instance_id: str, context: dict[str, Any]
    ) -> HandlerResult:
        config = self.resolved_config(node, context)
        customer_id = config.get("customerId")
        if not customer_id or find_unresolved(customer_id):
            return HandlerResult.fail("Customer ID not found in context")

        updates = config.get("updates") or {}
        if not updates:
            return HandlerResult.fail("updates is required")

        merge_strategy = config.get("mergeStrategy", "MERGE")
        if merge_strategy not in ("MERGE", "REPLACE"):
            return HandlerResult.fail(f"Unsupported mergeStrategy: {merge_strategy}")

        try:
            updated = self.once(
                instance_id,
                node.id,
                "update",
                lambda: self._crm.update_customer(
                    str(customer_id), updates, merge_strategy
                ),
            )
        except ExternalServiceError as e:
            if config.get("onError") == "CONTINUE":
                logger.warning(f"CRM update failed for {instance_id}/{node.id}, continuing: {e}")
                return HandlerResult.ok(None)
            raise

        return HandlerResult.ok(updated)
