"""HTTP client for the flow resource API."""

import asyncio
import logging
from typing import Any, Dict, List, Optional

import httpx

from ..config import ResourceConfig, get_settings
from ..exceptions import (
    ConflictError,
    NotFoundError,
    ResourceError,
    ResourceUnavailableError,
    ResourceValidationError,
)
from ..models import (
    CreateFlowRequest,
    CreateNodeRequest,
    CreateTransitionRequest,
    Flow,
    FlowNode,
    FlowTransition,
    UpdateFlowRequest,
    UpdateNodeRequest,
    UpdateTransitionRequest,
)
from .base import FlowResource

logger = logging.getLogger(__name__)


class HttpFlowResource(FlowResource):
    """
    Flow resource backed by the REST API.

    Usage:
        async with HttpFlowResource() as resource:
            flow = await resource.get_flow("flow_123")
            node = await resource.create_node(flow.id, request)
    """

    def __init__(
        self,
        config: Optional[ResourceConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the client.

        Args:
            config: API settings (defaults to the global settings)
            transport: Optional httpx transport, used by tests
        """
        self.config = config or get_settings().resource
        self._transport = transport
        self._http_client: Optional[httpx.AsyncClient] = None
        self._flows_path = f"{self.config.api_prefix.rstrip('/')}/flows"

    async def __aenter__(self):
        """Async context manager entry."""
        await self._ensure_client()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.close()

    async def _ensure_client(self) -> httpx.AsyncClient:
        """Ensure HTTP client is initialized."""
        if self._http_client is None:
            headers = {
                "Content-Type": "application/json",
                "User-Agent": "flow-builder/1.0.0",
            }
            if self.config.api_key:
                headers["Authorization"] = f"Bearer {self.config.api_key}"
            if self.config.tenant_id:
                headers["X-Tenant-Id"] = self.config.tenant_id

            self._http_client = httpx.AsyncClient(
                base_url=self.config.base_url.rstrip("/"),
                timeout=self.config.timeout_s,
                headers=headers,
                transport=self._transport,
            )
        return self._http_client

    async def close(self) -> None:
        """Close the client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None

    async def request(
        self,
        method: str,
        path: str,
        data: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """
        Make an API request.

        Args:
            method: HTTP method
            path: API path
            data: Request body
            params: Query parameters

        Returns:
            Response payload with any {"data": ...} envelope removed

        Raises:
            ResourceError: On API errors
        """
        client = await self._ensure_client()

        last_error = None
        for attempt in range(self.config.max_retries):
            try:
                response = await client.request(
                    method=method,
                    url=path,
                    json=data,
                    params=params,
                )
            except (httpx.ConnectError, httpx.TimeoutException) as e:
                last_error = e
                logger.warning(
                    f"{method} {path} failed (attempt {attempt + 1}/{self.config.max_retries}): {e}"
                )
                if attempt < self.config.max_retries - 1:
                    await asyncio.sleep(self.config.retry_delay_s * (attempt + 1))
                continue

            self._raise_for_status(response, path)

            if response.status_code == 204 or not response.content:
                return None

            payload = response.json()
            if isinstance(payload, dict) and "data" in payload and "id" not in payload:
                return payload["data"]
            return payload

        raise ResourceUnavailableError(
            f"Request failed after {self.config.max_retries} attempts: {last_error}"
        )

    def _raise_for_status(self, response: httpx.Response, path: str) -> None:
        """Map error responses to exceptions."""
        if response.status_code < 400:
            return

        try:
            error_data = response.json()
        except ValueError:
            error_data = {}
        if not isinstance(error_data, dict):
            error_data = {}

        message = error_data.get("message") or error_data.get("detail") or "API error"
        if isinstance(message, list):
            message = "; ".join(str(m) for m in message)

        if response.status_code == 404:
            raise NotFoundError(f"Resource not found: {path}")
        if response.status_code == 409:
            raise ConflictError(message)
        if response.status_code in (400, 422):
            raise ResourceValidationError(message, errors=error_data.get("errors", []))
        raise ResourceError(message, status_code=response.status_code)

    # =========================================================================
    # Flows
    # =========================================================================

    async def list_flows(self) -> List[Flow]:
        data = await self.request("GET", self._flows_path)
        return [Flow.from_dict(f) for f in data or []]

    async def get_flow(self, flow_id: str) -> Flow:
        data = await self.request("GET", f"{self._flows_path}/{flow_id}/full")
        return Flow.from_dict(data)

    async def create_flow(self, request: CreateFlowRequest) -> Flow:
        data = await self.request("POST", self._flows_path, data=request.to_payload())
        return Flow.from_dict(data)

    async def update_flow(self, flow_id: str, request: UpdateFlowRequest) -> Flow:
        data = await self.request(
            "PUT", f"{self._flows_path}/{flow_id}", data=request.to_payload()
        )
        return Flow.from_dict(data)

    async def delete_flow(self, flow_id: str) -> None:
        await self.request("DELETE", f"{self._flows_path}/{flow_id}")

    # =========================================================================
    # Nodes
    # =========================================================================

    async def create_node(self, flow_id: str, request: CreateNodeRequest) -> FlowNode:
        data = await self.request(
            "POST", f"{self._flows_path}/{flow_id}/nodes", data=request.to_payload()
        )
        return FlowNode.from_dict(data)

    async def update_node(
        self, flow_id: str, node_id: str, request: UpdateNodeRequest
    ) -> FlowNode:
        data = await self.request(
            "PUT",
            f"{self._flows_path}/{flow_id}/nodes/{node_id}",
            data=request.to_payload(),
        )
        return FlowNode.from_dict(data)

    async def delete_node(self, flow_id: str, node_id: str) -> None:
        await self.request("DELETE", f"{self._flows_path}/{flow_id}/nodes/{node_id}")

    # =========================================================================
    # Transitions
    # =========================================================================

    async def create_transition(
        self, flow_id: str, request: CreateTransitionRequest
    ) -> FlowTransition:
        data = await self.request(
            "POST", f"{self._flows_path}/{flow_id}/transitions", data=request.to_payload()
        )
        return FlowTransition.from_dict(data)

    async def update_transition(
        self, flow_id: str, transition_id: str, request: UpdateTransitionRequest
    ) -> FlowTransition:
        data = await self.request(
            "PUT",
            f"{self._flows_path}/{flow_id}/transitions/{transition_id}",
            data=request.to_payload(),
        )
        return FlowTransition.from_dict(data)

    async def delete_transition(self, flow_id: str, transition_id: str) -> None:
        await self.request(
            "DELETE", f"{self._flows_path}/{flow_id}/transitions/{transition_id}"
        )
