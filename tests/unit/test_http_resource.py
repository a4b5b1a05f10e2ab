"""Unit tests for the HTTP flow resource."""

import json

import httpx
import pytest

from flow_builder.config import NodeType, ResourceConfig
from flow_builder.exceptions import (
    ConflictError,
    NotFoundError,
    ResourceError,
    ResourceUnavailableError,
    ResourceValidationError,
)
from flow_builder.models import CreateNodeRequest, UpdateTransitionRequest
from flow_builder.resources import HttpFlowResource


FLOW_DOCUMENT = {
    "id": "flow-9",
    "name": "Support",
    "slug": "support",
    "version": 4,
    "nodes": [
        {"id": "s", "name": "Start", "type": "START", "position": {"x": 0, "y": 0}},
        {"id": "m", "label": "Hi", "type": "message", "positionX": 10, "positionY": 120,
         "config": {"message": "Hello"}},
    ],
    "transitions": [
        {"id": "t", "fromNodeId": "s", "toNodeId": "m", "priority": 3, "label": "go"},
    ],
}


@pytest.fixture
def resource_config():
    return ResourceConfig(
        base_url="https://flows.test",
        api_key="secret",
        tenant_id="tenant-1",
        max_retries=2,
        retry_delay_s=0,
    )


def make_resource(resource_config, handler):
    return HttpFlowResource(config=resource_config, transport=httpx.MockTransport(handler))


class TestHttpFlowResource:
    """Tests for HttpFlowResource."""

    @pytest.mark.asyncio
    async def test_get_flow_unwraps_envelope(self, resource_config):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"data": FLOW_DOCUMENT})

        async with make_resource(resource_config, handler) as resource:
            flow = await resource.get_flow("flow-9")

        request = seen[0]
        assert request.url.path == "/api/v1/flows/flow-9/full"
        assert request.headers["Authorization"] == "Bearer secret"
        assert request.headers["X-Tenant-Id"] == "tenant-1"

        assert flow.version == 4
        assert flow.nodes[1].name == "Hi"
        assert flow.nodes[1].type == NodeType.MESSAGE
        assert flow.nodes[1].position == {"x": 10.0, "y": 120.0}
        assert flow.nodes[1].flow_id == "flow-9"
        assert flow.transitions[0].label == "go"

    @pytest.mark.asyncio
    async def test_create_node_sends_camel_case(self, resource_config):
        bodies = []

        def handler(request):
            bodies.append(json.loads(request.content))
            return httpx.Response(
                201,
                json={"id": "n1", "flowId": "flow-9", "name": "Ask", "type": "QUESTION",
                      "position": {"x": 5, "y": 6}, "config": {"variableName": "age"}},
            )

        resource = make_resource(resource_config, handler)
        request = CreateNodeRequest(
            flow_id="flow-9",
            name="Ask",
            type=NodeType.QUESTION,
            position={"x": 5, "y": 6},
            config={"variableName": "age"},
        )

        node = await resource.create_node("flow-9", request)
        await resource.close()

        assert bodies[0]["flowId"] == "flow-9"
        assert bodies[0]["type"] == "QUESTION"
        assert node.id == "n1"
        assert node.config == {"variableName": "age"}

    @pytest.mark.asyncio
    async def test_update_transition_sends_only_set_fields(self, resource_config):
        bodies = []

        def handler(request):
            bodies.append((request.method, request.url.path, json.loads(request.content)))
            return httpx.Response(
                200,
                json={"id": "t", "fromNodeId": "s", "toNodeId": "m", "condition": None},
            )

        async with make_resource(resource_config, handler) as resource:
            await resource.update_transition("flow-9", "t", UpdateTransitionRequest(condition=None))

        method, path, body = bodies[0]
        assert method == "PUT"
        assert path == "/api/v1/flows/flow-9/transitions/t"
        assert body == {"condition": None}

    @pytest.mark.asyncio
    async def test_delete_returns_none_on_204(self, resource_config):
        def handler(request):
            return httpx.Response(204)

        async with make_resource(resource_config, handler) as resource:
            assert await resource.delete_node("flow-9", "m") is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status,body,error",
        [
            (404, {"message": "missing"}, NotFoundError),
            (409, {"message": "Slug already in use"}, ConflictError),
            (422, {"message": ["name is required"], "errors": ["name"]}, ResourceValidationError),
            (500, {"detail": "boom"}, ResourceError),
        ],
    )
    async def test_error_mapping(self, resource_config, status, body, error):
        def handler(request):
            return httpx.Response(status, json=body)

        async with make_resource(resource_config, handler) as resource:
            with pytest.raises(error) as exc_info:
                await resource.get_flow("flow-9")

        assert exc_info.value.status_code == status

    @pytest.mark.asyncio
    async def test_validation_error_details(self, resource_config):
        def handler(request):
            return httpx.Response(422, json={"message": ["a", "b"], "errors": ["name"]})

        async with make_resource(resource_config, handler) as resource:
            with pytest.raises(ResourceValidationError) as exc_info:
                await resource.list_flows()

        assert exc_info.value.message == "a; b"
        assert exc_info.value.errors == ["name"]

    @pytest.mark.asyncio
    async def test_connect_errors_are_retried(self, resource_config):
        calls = []

        def handler(request):
            calls.append(request)
            raise httpx.ConnectError("connection refused", request=request)

        async with make_resource(resource_config, handler) as resource:
            with pytest.raises(ResourceUnavailableError):
                await resource.get_flow("flow-9")

        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_recovers_after_transient_failure(self, resource_config):
        calls = []

        def handler(request):
            calls.append(request)
            if len(calls) == 1:
                raise httpx.ConnectTimeout("timed out", request=request)
            return httpx.Response(200, json=[FLOW_DOCUMENT])

        async with make_resource(resource_config, handler) as resource:
            flows = await resource.list_flows()

        assert [f.id for f in flows] == ["flow-9"]
