"""HTTP client for the integration gateway fronting CRM, documents, messaging and AI."""

from typing import Any, Literal

import httpx
from pydantic import BaseModel, ConfigDict, field_validator

from services.errors import ExternalServiceError


class IntegrationClientError(ExternalServiceError):
    """Raised when an integration gateway call fails."""

    pass


class CustomerUpdateRequest(BaseModel):
    """Request body for PATCH /crm/customers/{id}."""

    model_config = ConfigDict(frozen=True)

    updates: dict[str, Any]
    merge_strategy: Literal["MERGE", "REPLACE"] = "MERGE"

    @field_validator("updates")
    @classmethod
    def updates_not_empty(cls, v: dict) -> dict:
        if not v:
            raise ValueError("updates is required")
        return v


class DocumentListResponse(BaseModel):
    """Response from GET /documents."""

    model_config = ConfigDict(frozen=True)

    documents: list[dict[str, Any]] = []


class MessageResponse(BaseModel):
    """Response from POST /messages/{channel}, /tasks and /escalations."""

    model_config = ConfigDict(frozen=True, extra="allow")

    id: str
    status: str = "sent"


class EmailDraftResponse(BaseModel):
    """Response from POST /ai/email-drafts."""

    model_config = ConfigDict(frozen=True)

    subject: str = ""
    body: str
    confidence: float
    guard_rail_checks: dict[str, Any] = {}


class NextStepResponse(BaseModel):
    """Response from POST /ai/next-steps."""

    model_config = ConfigDict(frozen=True)

    action: str
    reasoning: str = ""
    confidence: float
    alternatives: list[dict[str, Any]] = []
    guard_rail_checks: dict[str, Any] = {}


class IntegrationClient:
    """HTTP client implementing the CRM, document, messaging and AI gateways."""

    def __init__(self, base_url: str, timeout: float = 30.0):
        """Initialize client with the gateway base URL and timeout."""
        if not base_url or not base_url.strip():
            raise ValueError("base_url is required")
        if timeout <= 0:
            raise ValueError("timeout must be positive")
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout

    def _send(self, method: str, path: str, **kwargs) -> httpx.Response:
        url = f"{self._base_url}{path}"

        try:
            with httpx.Client(timeout=self._timeout) as client:
                response = client.request(method, url, **kwargs)
        except httpx.ConnectError as e:
            raise IntegrationClientError(f"Connection failed: {e}") from e
        except httpx.TimeoutException as e:
            raise IntegrationClientError(f"Request timed out: {e}") from e
        except httpx.RequestError as e:
            raise IntegrationClientError(f"Request failed: {e}") from e

        return response

    def _check(self, response: httpx.Response) -> None:
        if response.status_code >= 400:
            raise IntegrationClientError(
                f"HTTP {response.status_code}: {response.text}"
            )

    def _json(self, response: httpx.Response, model: type[BaseModel] | None = None):
        try:
            data = response.json()
            if model is None:
                if not isinstance(data, dict):
                    raise ValueError("expected a JSON object")
                return data
            return model.model_validate(data)
        except Exception as e:
            raise IntegrationClientError(f"Invalid response: {e}") from e

    # CRM

    def find_customer(self, lookup_by: str, value: str) -> dict[str, Any] | None:
        """Call GET /crm/customers. A 404 means no match."""
        if not lookup_by or not lookup_by.strip():
            raise ValueError("lookup_by is required")

        response = self._send("GET", "/crm/customers", params={lookup_by: value})
        if response.status_code == 404:
            return None
        self._check(response)
        return self._json(response)

    def create_customer(self, data: dict[str, Any]) -> dict[str, Any]:
        """Call POST /crm/customers."""
        if not data:
            raise ValueError("data is required")

        response = self._send("POST", "/crm/customers", json=data)
        self._check(response)
        return self._json(response)

    def update_customer(
        self,
        customer_id: str,
        updates: dict[str, Any],
        merge_strategy: str = "MERGE",
    ) -> dict[str, Any]:
        """Call PATCH /crm/customers/{customer_id}."""
        if not customer_id or not customer_id.strip():
            raise ValueError("customer_id is required")

        request = CustomerUpdateRequest(updates=updates, merge_strategy=merge_strategy)
        response = self._send(
            "PATCH",
            f"/crm/customers/{customer_id}",
            json=request.model_dump(mode="json"),
        )
        self._check(response)
        return self._json(response)

    # Documents

    def list_documents(
        self, entity_id: str, document_types: list[str] | None = None
    ) -> list[dict[str, Any]]:
        """Call GET /documents for an entity."""
        if not entity_id or not entity_id.strip():
            raise ValueError("entity_id is required")

        params: dict[str, Any] = {"entity_id": entity_id}
        if document_types:
            params["document_type"] = document_types

        response = self._send("GET", "/documents", params=params)
        self._check(response)
        return list(self._json(response, DocumentListResponse).documents)

    # Messaging

    def send_message(self, channel: str, message: dict[str, Any]) -> dict[str, Any]:
        """Call POST /messages/{channel}."""
        if not channel or not channel.strip():
            raise ValueError("channel is required")

        response = self._send("POST", f"/messages/{channel.lower()}", json=message)
        self._check(response)
        return self._json(response, MessageResponse).model_dump()

    def create_task(self, task: dict[str, Any]) -> dict[str, Any]:
        """Call POST /tasks."""
        response = self._send("POST", "/tasks", json=task)
        self._check(response)
        return self._json(response, MessageResponse).model_dump()

    def escalate(self, escalation: dict[str, Any]) -> dict[str, Any]:
        """Call POST /escalations."""
        response = self._send("POST", "/escalations", json=escalation)
        self._check(response)
        return self._json(response, MessageResponse).model_dump()

    # AI drafting

    def draft_email(self, request: dict[str, Any]) -> dict[str, Any]:
        """Call POST /ai/email-drafts."""
        response = self._send("POST", "/ai/email-drafts", json=request)
        self._check(response)
        return self._json(response, EmailDraftResponse).model_dump()

    def suggest_next_step(self, request: dict[str, Any]) -> dict[str, Any]:
        """Call POST /ai/next-steps."""
        response = self._send("POST", "/ai/next-steps", json=request)
        self._check(response)
        return self._json(response, NextStepResponse).model_dump()
