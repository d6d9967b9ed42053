"""
Dynamic Message Processor Service
Routes an inbound message either to the tenant's active flow or to the
static fallback processor.
"""
from typing import Optional, Dict, Any

# Utils
from utils.log_utils import LogUtil

# Services
from services.flow_service import FlowService
from services.conversation_engine_service import ConversationEngineService
from services.static_message_processor_service import StaticMessageProcessorService

# Models
from models.flow_data import FlowData
from models.response.conversation.conversation_status import ConversationStatus

# Exceptions
from exceptions.flow_exception import DynamicProcessingException


class DynamicMessageProcessorService:
    def __init__(
        self,
        log_util: LogUtil,
        flow_service: FlowService,
        conversation_engine_service: ConversationEngineService,
        static_message_processor_service: StaticMessageProcessorService
    ):
        self.log_util = log_util
        self.flow_service = flow_service
        self.conversation_engine_service = conversation_engine_service
        self.static_message_processor_service = static_message_processor_service

    async def process_message(
        self,
        tenant_id: str,
        conversation_id: str,
        channel_identity: str,
        message_content: str
    ) -> Dict[str, Any]:
        """
        Process one inbound message.

        Returns:
            Dict with keys response, responses, should_continue, processed_by,
            flow_id and current_node_id. Without an active flow the static
            processor's result is returned as it is.

        Raises:
            DynamicProcessingException: DYNAMIC_PROCESSING_FAILED when the active
                flow lookup fails, DYNAMIC_MESSAGE_FAILED when the engine fails
        """
        try:
            active_flow: Optional[FlowData] = await self.flow_service.get_active_flow(tenant_id)
        except Exception as e:
            self.log_util.error(
                service_name="DynamicMessageProcessorService",
                message=f"Error looking up active flow for tenant {tenant_id}: {str(e)}"
            )
            raise DynamicProcessingException(
                message=f"Failed to look up active flow: {str(e)}",
                code="DYNAMIC_PROCESSING_FAILED",
                cause=e
            )

        if active_flow is None:
            self.log_util.debug(
                service_name="DynamicMessageProcessorService",
                message=f"No active flow for tenant {tenant_id}, using static processor"
            )
            return await self.static_message_processor_service.process(
                tenant_id=tenant_id,
                conversation_id=conversation_id,
                channel_identity=channel_identity,
                message_content=message_content
            )

        try:
            result = await self.conversation_engine_service.process_turn(
                tenant_id=tenant_id,
                conversation_id=conversation_id,
                channel_identity=channel_identity,
                flow_id=active_flow.id,
                user_input=message_content
            )
        except Exception as e:
            self.log_util.error(
                service_name="DynamicMessageProcessorService",
                message=f"Error processing message for conversation {conversation_id}: {str(e)}"
            )
            raise DynamicProcessingException(
                message=f"Failed to process message: {str(e)}",
                code="DYNAMIC_MESSAGE_FAILED",
                cause=e
            )

        combined = result.response
        return {
            "response": combined.content if combined else None,
            "responses": [item.content for item in result.responses],
            "message_type": combined.message_type if combined else "text",
            "metadata": combined.metadata if combined else None,
            "should_continue": not result.should_end_conversation,
            "processed_by": "dynamic",
            "flow_id": result.flow_id,
            "current_node_id": result.next_node_id,
        }

    async def enable_dynamic_processing(self, tenant_id: str, flow_id: str) -> FlowData:
        return await self.flow_service.activate_flow(tenant_id, flow_id)

    async def disable_dynamic_processing(self, tenant_id: str) -> int:
        return await self.flow_service.deactivate_all_flows(tenant_id)

    async def get_conversation_status(self, tenant_id: str, conversation_id: str) -> ConversationStatus:
        context = await self.conversation_engine_service.get_conversation_context(tenant_id, conversation_id)
        if context is None:
            return ConversationStatus(conversation_id=conversation_id, is_active=False)
        return ConversationStatus(
            conversation_id=conversation_id,
            is_active=True,
            flow_id=context.flow_id,
            current_node_id=context.current_node_id,
            variables=context.variables,
            turns=len(context.execution_history),
            updated_at=context.updated_at
        )

    async def reset_conversation(self, tenant_id: str, conversation_id: str) -> bool:
        return await self.conversation_engine_service.reset_conversation(tenant_id, conversation_id)
