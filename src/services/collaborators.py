"""Contracts for the external systems node handlers talk to.

Handlers depend on these protocols only. ``IntegrationClient`` implements all
of them over HTTP; tests substitute mocks.
"""

from typing import Any, Protocol


class CrmGateway(Protocol):
    def find_customer(self, lookup_by: str, value: str) -> dict[str, Any] | None: ...

    def create_customer(self, data: dict[str, Any]) -> dict[str, Any]: ...

    def update_customer(
        self,
        customer_id: str,
        updates: dict[str, Any],
        merge_strategy: str = "MERGE",
    ) -> dict[str, Any]: ...


class DocumentGateway(Protocol):
    def list_documents(
        self, entity_id: str, document_types: list[str] | None = None
    ) -> list[dict[str, Any]]: ...


class MessagingGateway(Protocol):
    def send_message(self, channel: str, message: dict[str, Any]) -> dict[str, Any]: ...

    def create_task(self, task: dict[str, Any]) -> dict[str, Any]: ...

    def escalate(self, escalation: dict[str, Any]) -> dict[str, Any]: ...


class AIDraftingGateway(Protocol):
    def draft_email(self, request: dict[str, Any]) -> dict[str, Any]: ...

    def suggest_next_step(self, request: dict[str, Any]) -> dict[str, Any]: ...
