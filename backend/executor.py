"""
Action Executor adapters — carry out the business action a conversation
settled on (create the ticket, send the notification, book the visit).

The engine only builds an ActionRequest and reads back an ActionResult;
how the action is performed is entirely up to the adapter:

  RESTActionExecutor  POSTs the request to a configured HTTP backend
  MockActionExecutor  records requests in memory (development, tests)
"""
from __future__ import annotations

import structlog
from typing import Any, Optional

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from config.settings import ExecutorConfig, get_settings
from core.errors import ActionExecutionError
from core.ports import ActionExecutor
from models.schemas import ActionRequest, ActionResult, ExecutionContext

logger = structlog.get_logger()

DEFAULT_ENDPOINT = "/actions/{action_type}"


class RESTActionExecutor(ActionExecutor):
    """
    Executes actions against a REST backend.

    endpoints maps action type → path; unmapped types go to
    /actions/{action_type}. The backend may answer with
    {"success": bool, "message": str, "error": str, "data": {...}}; a bare
    2xx with any other body counts as success.
    """

    def __init__(self, config: ExecutorConfig = None):
        self.config = config or get_settings().executor
        self.client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self.client is None or self.client.is_closed:
            headers = {}
            if self.config.auth_type == "bearer":
                token = self.config.auth_credentials.get("token", "")
                headers["Authorization"] = f"Bearer {token}"
            elif self.config.auth_type == "api_key":
                key_name = self.config.auth_credentials.get("header_name", "X-API-Key")
                headers[key_name] = self.config.auth_credentials.get("api_key", "")

            self.client = httpx.AsyncClient(
                base_url=self.config.base_url,
                headers=headers,
                timeout=self.config.timeout_s,
            )
        return self.client

    def endpoint_for(self, action_type: str) -> str:
        return self.config.endpoints.get(action_type, DEFAULT_ENDPOINT).replace("{action_type}", action_type)

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, max=10),
        retry=retry_if_exception_type(httpx.TransportError),
        reraise=True,
    )
    async def _request(self, method: str, url: str, **kwargs) -> Any:
        client = await self._get_client()
        response = await client.request(method, url, **kwargs)
        response.raise_for_status()
        return response.json() if response.content else {}

    @staticmethod
    def _to_result(body: Any) -> ActionResult:
        if not isinstance(body, dict):
            return ActionResult(success=True, data={"response": body})
        return ActionResult(
            success=bool(body.get("success", True)),
            message=body.get("message"),
            error=body.get("error"),
            data=body.get("data") if isinstance(body.get("data"), dict) else {},
        )

    async def execute(self, request: ActionRequest, context: ExecutionContext) -> ActionResult:
        url = self.endpoint_for(request.type)
        payload = {
            **request.model_dump(mode="json"),
            "context": context.model_dump(mode="json"),
        }
        try:
            body = await self._request("POST", url, json=payload)
        except httpx.HTTPStatusError as e:
            logger.error("action_backend_rejected",
                         action_id=request.id,
                         action_type=request.type,
                         status_code=e.response.status_code)
            return ActionResult(success=False, error=f"HTTP {e.response.status_code}")
        except httpx.HTTPError as e:
            logger.error("action_backend_unreachable", action_id=request.id, error=str(e))
            raise ActionExecutionError(str(e), action_type=request.type, retryable=True) from e

        result = self._to_result(body)
        logger.info("action_backend_called",
                    action_id=request.id,
                    action_type=request.type,
                    endpoint=url,
                    success=result.success)
        return result

    async def close(self):
        if self.client:
            await self.client.aclose()


class MockActionExecutor(ActionExecutor):
    """
    In-memory executor for development and testing.
    Every request is kept in `executed`; types listed in fail_types fail.
    """

    def __init__(self, fail_types: list[str] = None, message: str = None):
        self.fail_types = set(fail_types or [])
        self.message = message
        self.executed: list[tuple[ActionRequest, ExecutionContext]] = []

    async def execute(self, request: ActionRequest, context: ExecutionContext) -> ActionResult:
        self.executed.append((request, context))
        logger.info("mock_action_executed",
                    action_id=request.id,
                    action_type=request.type,
                    param_keys=list(request.params.keys()))
        if request.type in self.fail_types:
            return ActionResult(success=False, error=f"Mock failure for {request.type}")
        return ActionResult(
            success=True,
            message=self.message,
            data={"reference": request.id, "mock": True},
        )


def create_action_executor(config: ExecutorConfig = None) -> ActionExecutor:
    """Factory function to create the appropriate action executor."""
    config = config or get_settings().executor
    if config.type == "rest" and config.base_url and not config.base_url.startswith("${"):
        return RESTActionExecutor(config)
    logger.warning("using_mock_executor", reason="no executor configured or base_url empty")
    return MockActionExecutor()
