"""
Action and Integration Executor Services
Run the side effects of action and integration nodes.

Business side effects (transactions, notifications) are delegated to the
action service over HTTP; integrations call arbitrary external endpoints.
"""
from typing import Optional, Dict, Any, Callable, Awaitable
import httpx

from utils.log_utils import LogUtil
from utils.environment_utils import EnvironmentUtils
from utils.template_utils import render_structure
from exceptions.flow_exception import FlowDefinitionException, NodeExecutionException

# handler(parameters, variables, tenant_id, conversation_id) -> result
ActionHandler = Callable[[Dict[str, Any], Dict[str, Any], str, str], Awaitable[Any]]

REMOTE_ACTION_TYPES = ["create_transaction", "update_transaction", "send_notification"]


class HttpCaller:
    """
    Thin httpx wrapper shared by the executors.
    Any transport error or non-2xx status is reported as NodeExecutionException.
    """

    def __init__(self, log_util: LogUtil, timeout: float, service_name: str, error_code: str):
        self.log_util = log_util
        self.timeout = timeout
        self.service_name = service_name
        self.error_code = error_code

    async def request(
        self,
        method: str,
        url: str,
        payload: Optional[Any] = None,
        headers: Optional[Dict[str, str]] = None
    ) -> Any:
        if not url:
            raise NodeExecutionException(message="No URL configured for the request", code=self.error_code)
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.request(
                    method.upper(),
                    url,
                    json=payload if method.upper() != "GET" else None,
                    params=payload if method.upper() == "GET" and isinstance(payload, dict) else None,
                    headers=headers or {}
                )
        except httpx.TimeoutException:
            self.log_util.error(
                service_name=self.service_name,
                message=f"Timeout calling {method.upper()} {url}"
            )
            raise NodeExecutionException(message=f"Timeout calling {url}", code=self.error_code)
        except httpx.HTTPError as e:
            self.log_util.error(
                service_name=self.service_name,
                message=f"Error calling {method.upper()} {url}: {str(e)}"
            )
            raise NodeExecutionException(message=f"Error calling {url}: {str(e)}", code=self.error_code)

        if response.status_code < 200 or response.status_code >= 300:
            self.log_util.error(
                service_name=self.service_name,
                message=f"{method.upper()} {url} returned error: {response.status_code} - {response.text}"
            )
            raise NodeExecutionException(
                message=f"{url} returned status {response.status_code}",
                code=self.error_code
            )

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return response.text


class ActionExecutorService:
    """
    Registry of action handlers keyed by action type.
    Built-ins: set_variable, create_transaction, update_transaction,
    send_notification, call_webhook. register() adds more.
    """

    def __init__(self, log_util: LogUtil, environment_utils: EnvironmentUtils):
        self.log_util = log_util
        self.action_service_url = str(environment_utils.get_env_variable("ACTION_SERVICE_URL")).rstrip("/")
        self.http = HttpCaller(
            log_util=log_util,
            timeout=float(environment_utils.get_env_variable("HTTP_TIMEOUT_SECONDS")),
            service_name="ActionExecutorService",
            error_code="ACTION_FAILED"
        )
        self._handlers: Dict[str, ActionHandler] = {
            "set_variable": self._set_variable,
            "call_webhook": self._call_webhook,
        }
        for action_type in REMOTE_ACTION_TYPES:
            self._handlers[action_type] = self._remote_action(action_type)

    def register(self, action_type: str, handler: ActionHandler) -> None:
        self._handlers[action_type] = handler

    def supports(self, action_type: str) -> bool:
        return action_type in self._handlers

    async def execute(
        self,
        action_type: str,
        action_parameters: Dict[str, Any],
        variables: Dict[str, Any],
        tenant_id: str,
        conversation_id: str
    ) -> Any:
        """
        Run one action. Parameters are rendered against the current variables first.

        Raises:
            FlowDefinitionException: UNKNOWN_ACTION_TYPE
            NodeExecutionException: ACTION_FAILED
        """
        handler = self._handlers.get(action_type)
        if handler is None:
            raise FlowDefinitionException(
                message=f"Unknown action type: {action_type}",
                code="UNKNOWN_ACTION_TYPE"
            )

        parameters = render_structure(action_parameters or {}, variables)
        self.log_util.info(
            service_name="ActionExecutorService",
            message=f"[ACTION] Executing {action_type} for tenant {tenant_id}, conversation {conversation_id}"
        )
        try:
            return await handler(parameters, variables, tenant_id, conversation_id)
        except (NodeExecutionException, FlowDefinitionException):
            raise
        except Exception as e:
            self.log_util.error(
                service_name="ActionExecutorService",
                message=f"[ACTION] {action_type} failed: {str(e)}"
            )
            raise NodeExecutionException(message=f"Action {action_type} failed: {str(e)}", code="ACTION_FAILED")

    async def _set_variable(self, parameters: Dict[str, Any], variables: Dict[str, Any],
                            tenant_id: str, conversation_id: str) -> Any:
        return parameters.get("value")

    async def _call_webhook(self, parameters: Dict[str, Any], variables: Dict[str, Any],
                            tenant_id: str, conversation_id: str) -> Any:
        payload = parameters.get("payload")
        if payload is None:
            payload = {
                "tenant_id": tenant_id,
                "conversation_id": conversation_id,
                "variables": dict(variables),
            }
        return await self.http.request(
            method=parameters.get("method", "POST"),
            url=parameters.get("url", ""),
            payload=payload,
            headers=parameters.get("headers")
        )

    def _remote_action(self, action_type: str) -> ActionHandler:
        async def _call(parameters: Dict[str, Any], variables: Dict[str, Any],
                        tenant_id: str, conversation_id: str) -> Any:
            return await self.http.request(
                method="POST",
                url=f"{self.action_service_url}/{tenant_id}/{action_type}",
                payload={
                    "conversation_id": conversation_id,
                    "parameters": parameters,
                    "variables": dict(variables),
                }
            )
        return _call


class IntegrationExecutorService:
    """
    Executes integration nodes: webhook (POST of the conversation variables
    or a configured body) and api_call (configurable method, url, headers, body).
    """

    def __init__(self, log_util: LogUtil, environment_utils: EnvironmentUtils):
        self.log_util = log_util
        self.http = HttpCaller(
            log_util=log_util,
            timeout=float(environment_utils.get_env_variable("HTTP_TIMEOUT_SECONDS")),
            service_name="IntegrationExecutorService",
            error_code="INTEGRATION_FAILED"
        )

    async def execute(
        self,
        integration_type: str,
        integration_config: Dict[str, Any],
        variables: Dict[str, Any],
        tenant_id: str,
        conversation_id: str
    ) -> Any:
        """
        Raises:
            FlowDefinitionException: UNKNOWN_INTEGRATION_TYPE
            NodeExecutionException: INTEGRATION_FAILED
        """
        config = render_structure(integration_config or {}, variables)
        self.log_util.info(
            service_name="IntegrationExecutorService",
            message=f"[INTEGRATION] Executing {integration_type} for tenant {tenant_id}, conversation {conversation_id}"
        )

        if integration_type == "webhook":
            body = config.get("body")
            if body is None:
                body = {
                    "tenant_id": tenant_id,
                    "conversation_id": conversation_id,
                    "variables": dict(variables),
                }
            return await self.http.request(
                method="POST",
                url=config.get("url", ""),
                payload=body,
                headers=config.get("headers")
            )

        if integration_type == "api_call":
            return await self.http.request(
                method=config.get("method", "GET"),
                url=config.get("url", ""),
                payload=config.get("body"),
                headers=config.get("headers")
            )

        raise FlowDefinitionException(
            message=f"Unknown integration type: {integration_type}",
            code="UNKNOWN_INTEGRATION_TYPE"
        )
