import aiohttp
from typing import Dict, Any

# Utils
from utils.log_utils import LogUtil
from utils.environment_utils import EnvironmentUtils

DEFAULT_STATIC_RESPONSE = "Message processed with static flow. Dynamic bot flows not configured."


class StaticMessageProcessorService:
    """
    Fallback processor for tenants without an active flow.
    Forwards the message to STATIC_PROCESSOR_URL when one is configured,
    otherwise answers with a fixed notice.
    """

    def __init__(self, log_util: LogUtil, environment_utils: EnvironmentUtils):
        self.log_util = log_util
        self.static_processor_url = str(environment_utils.get_env_variable("STATIC_PROCESSOR_URL"))
        self.timeout = float(environment_utils.get_env_variable("HTTP_TIMEOUT_SECONDS"))

    async def process(
        self,
        tenant_id: str,
        conversation_id: str,
        channel_identity: str,
        message_content: str
    ) -> Dict[str, Any]:
        if not self.static_processor_url:
            return self._default_result()

        payload = {
            "tenant_id": tenant_id,
            "conversation_id": conversation_id,
            "phone_number": channel_identity,
            "message": message_content,
        }
        timeout = aiohttp.ClientTimeout(total=self.timeout)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.post(self.static_processor_url, json=payload) as response:
                if response.status != 200:
                    self.log_util.warning(
                        service_name="StaticMessageProcessorService",
                        message=f"Static processor returned {response.status} for conversation {conversation_id}"
                    )
                    return self._default_result()
                data = await response.json()

        result = self._default_result()
        if isinstance(data, dict):
            result.update(data)
        result["processed_by"] = "static"
        return result

    def _default_result(self) -> Dict[str, Any]:
        return {
            "response": DEFAULT_STATIC_RESPONSE,
            "responses": [DEFAULT_STATIC_RESPONSE],
            "message_type": "text",
            "metadata": None,
            "should_continue": True,
            "processed_by": "static",
            "flow_id": None,
            "current_node_id": None,
        }
