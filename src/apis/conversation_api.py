from fastapi import APIRouter, Request
from fastapi.exceptions import HTTPException

# Utils
from utils.log_utils import LogUtil
from utils.request_utils import get_tenant_id

# Services
from services.dynamic_message_processor_service import DynamicMessageProcessorService

# Models
from models.request.conversation_request import ProcessMessageRequest, EnableDynamicProcessingRequest
from models.response.conversation.conversation_status import ConversationStatus

# Exceptions
from exceptions.flow_exception import FlowException


def create_conversation_api(
    log_util: LogUtil,
    dynamic_message_processor_service: DynamicMessageProcessorService
) -> APIRouter:
    """
    Create API router for running conversations against the tenant's active flow.
    """
    router = APIRouter(
        prefix="/conversations",
        tags=["conversations"],
    )

    def _to_http_exception(action: str, e: Exception) -> HTTPException:
        log_util.error(service_name="ConversationAPI", message=f"Error {action}: {e}")
        if isinstance(e, FlowException):
            return HTTPException(status_code=e.status_code, detail=e.to_dict())
        return HTTPException(status_code=500, detail=str(e))

    @router.post("/enable-dynamic")
    async def enable_dynamic_processing(request: Request, enable_request: EnableDynamicProcessingRequest):
        try:
            tenant_id = get_tenant_id(request)
            flow = await dynamic_message_processor_service.enable_dynamic_processing(
                tenant_id=tenant_id,
                flow_id=enable_request.flow_id
            )
            return {"enabled": True, "flow_id": flow.id}
        except HTTPException:
            raise
        except Exception as e:
            raise _to_http_exception("enabling dynamic processing", e)

    @router.post("/disable-dynamic")
    async def disable_dynamic_processing(request: Request):
        try:
            tenant_id = get_tenant_id(request)
            deactivated = await dynamic_message_processor_service.disable_dynamic_processing(tenant_id=tenant_id)
            return {"enabled": False, "deactivated_flows": deactivated}
        except HTTPException:
            raise
        except Exception as e:
            raise _to_http_exception("disabling dynamic processing", e)

    @router.post("/{conversation_id}/process")
    async def process_message(request: Request, conversation_id: str, message_request: ProcessMessageRequest):
        """
        Run one conversation turn and return the bot's reply.
        """
        try:
            tenant_id = get_tenant_id(request)
            return await dynamic_message_processor_service.process_message(
                tenant_id=tenant_id,
                conversation_id=conversation_id,
                channel_identity=message_request.phone_number,
                message_content=message_request.message
            )
        except HTTPException:
            raise
        except Exception as e:
            raise _to_http_exception(f"processing message for conversation {conversation_id}", e)

    @router.get("/{conversation_id}/status", response_model=ConversationStatus)
    async def get_conversation_status(request: Request, conversation_id: str):
        try:
            tenant_id = get_tenant_id(request)
            return await dynamic_message_processor_service.get_conversation_status(
                tenant_id=tenant_id,
                conversation_id=conversation_id
            )
        except HTTPException:
            raise
        except Exception as e:
            raise _to_http_exception("getting conversation status", e)

    @router.post("/{conversation_id}/reset")
    async def reset_conversation(request: Request, conversation_id: str):
        try:
            tenant_id = get_tenant_id(request)
            reset = await dynamic_message_processor_service.reset_conversation(
                tenant_id=tenant_id,
                conversation_id=conversation_id
            )
            return {"reset": reset, "conversation_id": conversation_id}
        except HTTPException:
            raise
        except Exception as e:
            raise _to_http_exception("resetting conversation", e)

    return router
