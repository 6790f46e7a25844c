"""Tests for the REST and mock action executors."""
import json
from unittest.mock import AsyncMock, patch

import httpx
import pytest
from tenacity import wait_none

from backend.executor import MockActionExecutor, RESTActionExecutor, create_action_executor
from config.settings import ExecutorConfig
from core.errors import ActionExecutionError
from models.schemas import ActionRequest, ExecutionContext


@pytest.fixture
def config():
    return ExecutorConfig(
        type="rest",
        base_url="http://executor.test",
        auth_type="bearer",
        auth_credentials={"token": "tok"},
        endpoints={"create_ticket": "/tickets"},
        timeout_s=5.0,
    )


@pytest.fixture
def request_():
    return ActionRequest(
        type="create_ticket",
        params={"title": "Impressora", "description": "não imprime"},
        config={"agent_id": "agent-1", "ticket_id": "T-1"},
    )


@pytest.fixture
def context():
    return ExecutionContext(
        tenant_id="tenant-1",
        message_data={"content": "sim", "sender": "user-1", "channel": "chat"},
        rule_id="agent-1",
        rule_name="Suporte",
    )


@pytest.mark.asyncio
class TestRESTActionExecutor:

    async def test_bearer_header(self, config):
        executor = RESTActionExecutor(config)
        client = await executor._get_client()
        assert client.headers["Authorization"] == "Bearer tok"
        assert client.base_url.host == "executor.test"
        await executor.close()

    async def test_api_key_header(self, config):
        config.auth_type = "api_key"
        config.auth_credentials = {"api_key": "k-123", "header_name": "X-Token"}
        executor = RESTActionExecutor(config)
        client = await executor._get_client()
        assert client.headers["X-Token"] == "k-123"
        await executor.close()

    async def test_endpoint_map(self, config):
        executor = RESTActionExecutor(config)
        assert executor.endpoint_for("create_ticket") == "/tickets"
        assert executor.endpoint_for("send_notification") == "/actions/send_notification"

    async def test_execute_posts_request_and_context(self, config, request_, context):
        executor = RESTActionExecutor(config)
        body = {"success": True, "message": "Ticket T-99 criado", "data": {"ticket_id": "T-99"}}
        with patch.object(executor, "_request", AsyncMock(return_value=body)) as mock_request:
            result = await executor.execute(request_, context)

        assert result.success
        assert result.message == "Ticket T-99 criado"
        assert result.data == {"ticket_id": "T-99"}
        method, url = mock_request.call_args.args
        payload = mock_request.call_args.kwargs["json"]
        assert (method, url) == ("POST", "/tickets")
        assert payload["id"] == request_.id
        assert payload["params"]["title"] == "Impressora"
        assert payload["context"]["rule_id"] == "agent-1"

    async def test_backend_reported_failure(self, config, request_, context):
        executor = RESTActionExecutor(config)
        body = {"success": False, "error": "queue full"}
        with patch.object(executor, "_request", AsyncMock(return_value=body)):
            result = await executor.execute(request_, context)
        assert not result.success
        assert result.error == "queue full"

    async def test_non_dict_body_counts_as_success(self, config, request_, context):
        executor = RESTActionExecutor(config)
        with patch.object(executor, "_request", AsyncMock(return_value=["ok"])):
            result = await executor.execute(request_, context)
        assert result.success
        assert result.data == {"response": ["ok"]}

    async def test_http_status_error_becomes_failed_result(self, config, request_, context):
        executor = RESTActionExecutor(config)
        executor.client = httpx.AsyncClient(
            base_url=config.base_url,
            transport=httpx.MockTransport(lambda req: httpx.Response(422, json={"detail": "bad"})),
        )
        result = await executor.execute(request_, context)

        assert not result.success
        assert result.error == "HTTP 422"
        await executor.close()

    async def test_real_request_round_trip(self, config, request_, context):
        seen = []

        def handler(req: httpx.Request) -> httpx.Response:
            seen.append(req)
            return httpx.Response(200, json={"success": True, "message": "feito"})

        executor = RESTActionExecutor(config)
        executor.client = httpx.AsyncClient(base_url=config.base_url, transport=httpx.MockTransport(handler))
        result = await executor.execute(request_, context)

        assert result.message == "feito"
        assert seen[0].method == "POST"
        assert seen[0].url.path == "/tickets"
        assert json.loads(seen[0].content)["type"] == "create_ticket"
        await executor.close()

    async def test_transport_errors_are_retried(self, config, request_, context):
        calls = {"n": 0}

        def handler(req: httpx.Request) -> httpx.Response:
            calls["n"] += 1
            if calls["n"] < 3:
                raise httpx.ConnectError("refused", request=req)
            return httpx.Response(200, json={"success": True})

        executor = RESTActionExecutor(config)
        executor.client = httpx.AsyncClient(base_url=config.base_url, transport=httpx.MockTransport(handler))
        with patch.object(RESTActionExecutor._request.retry, "wait", wait_none()):
            result = await executor.execute(request_, context)

        assert result.success
        assert calls["n"] == 3
        await executor.close()

    async def test_unreachable_backend_raises(self, config, request_, context):
        def handler(req: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=req)

        executor = RESTActionExecutor(config)
        executor.client = httpx.AsyncClient(base_url=config.base_url, transport=httpx.MockTransport(handler))
        with patch.object(RESTActionExecutor._request.retry, "wait", wait_none()):
            with pytest.raises(ActionExecutionError) as exc:
                await executor.execute(request_, context)

        assert exc.value.retryable
        assert exc.value.action_type == "create_ticket"
        await executor.close()


@pytest.mark.asyncio
class TestMockActionExecutor:

    async def test_records_and_succeeds(self, request_, context):
        executor = MockActionExecutor()
        result = await executor.execute(request_, context)

        assert result.success
        assert result.message is None
        assert result.data["reference"] == request_.id
        assert executor.executed == [(request_, context)]

    async def test_fail_types(self, request_, context):
        executor = MockActionExecutor(fail_types=["create_ticket"])
        result = await executor.execute(request_, context)
        assert not result.success
        assert "create_ticket" in result.error


class TestCreateActionExecutor:
    def test_rest_with_base_url(self, config):
        assert isinstance(create_action_executor(config), RESTActionExecutor)

    def test_rest_without_base_url_falls_back(self, config):
        config.base_url = ""
        assert isinstance(create_action_executor(config), MockActionExecutor)

    def test_mock(self):
        assert isinstance(create_action_executor(ExecutorConfig(type="mock")), MockActionExecutor)

    def test_unresolved_placeholder_falls_back(self, config):
        config.base_url = "${ACTION_EXECUTOR_URL}"
        assert isinstance(create_action_executor(config), MockActionExecutor)
