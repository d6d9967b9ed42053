from typing import Optional
from fastapi import APIRouter, Request
from fastapi.exceptions import HTTPException

# Utils
from utils.log_utils import LogUtil
from utils.request_utils import get_tenant_id

# Services
from services.flow_service import FlowService

# Models
from models.request.flow_request import CreateFlowRequest, UpdateFlowRequest, CreateFlowFromTemplateRequest

# Exceptions
from exceptions.flow_exception import FlowException

def create_flow_api(
    log_util: LogUtil,
    flow_service: FlowService
) -> APIRouter:
    router = APIRouter(
        prefix="/flow",
        tags=["flow"],
    )

    def _to_http_exception(action: str, e: Exception) -> HTTPException:
        log_util.error(service_name="FlowAPI", message=f"Error {action}: {e}")
        if isinstance(e, FlowException):
            return HTTPException(status_code=e.status_code, detail=e.to_dict())
        return HTTPException(status_code=500, detail=str(e))

    @router.post("/create")
    async def create_flow(request: Request, flow_request: CreateFlowRequest):
        try:
            tenant_id = get_tenant_id(request)
            return await flow_service.create_flow(tenant_id=tenant_id, flow_request=flow_request)
        except HTTPException:
            raise
        except Exception as e:
            raise _to_http_exception("creating flow", e)

    @router.get("/list")
    async def get_flows_list(
        request: Request,
        business_type: Optional[str] = None,
        is_active: Optional[bool] = None,
        is_template: Optional[bool] = None
    ):
        try:
            tenant_id = get_tenant_id(request)
            return await flow_service.get_flows_list(
                tenant_id=tenant_id,
                business_type=business_type,
                is_active=is_active,
                is_template=is_template
            )
        except HTTPException:
            raise
        except Exception as e:
            raise _to_http_exception("getting flows list", e)

    @router.get("/detail/{flow_id}")
    async def get_flow_detail(request: Request, flow_id: str):
        try:
            tenant_id = get_tenant_id(request)
            return await flow_service.get_flow_detail(tenant_id=tenant_id, flow_id=flow_id)
        except HTTPException:
            raise
        except Exception as e:
            raise _to_http_exception("getting flow detail", e)

    @router.put("/update/{flow_id}")
    async def update_flow(request: Request, flow_id: str, flow_request: UpdateFlowRequest):
        try:
            tenant_id = get_tenant_id(request)
            return await flow_service.update_flow(tenant_id=tenant_id, flow_id=flow_id, flow_request=flow_request)
        except HTTPException:
            raise
        except Exception as e:
            raise _to_http_exception("updating flow", e)

    @router.delete("/delete/{flow_id}")
    async def delete_flow(request: Request, flow_id: str):
        try:
            tenant_id = get_tenant_id(request)
            await flow_service.delete_flow(tenant_id=tenant_id, flow_id=flow_id)
            return {"deleted": True, "flow_id": flow_id}
        except HTTPException:
            raise
        except Exception as e:
            raise _to_http_exception("deleting flow", e)

    @router.post("/{flow_id}/nodes")
    async def add_node(request: Request, flow_id: str, node_data: dict):
        try:
            tenant_id = get_tenant_id(request)
            return await flow_service.add_node(tenant_id=tenant_id, flow_id=flow_id, node_data=node_data)
        except HTTPException:
            raise
        except Exception as e:
            raise _to_http_exception("adding node", e)

    @router.put("/{flow_id}/nodes/{node_id}")
    async def update_node(request: Request, flow_id: str, node_id: str, node_data: dict):
        try:
            tenant_id = get_tenant_id(request)
            return await flow_service.update_node(tenant_id=tenant_id, flow_id=flow_id, node_id=node_id, node_data=node_data)
        except HTTPException:
            raise
        except Exception as e:
            raise _to_http_exception("updating node", e)

    @router.delete("/{flow_id}/nodes/{node_id}")
    async def delete_node(request: Request, flow_id: str, node_id: str):
        try:
            tenant_id = get_tenant_id(request)
            return await flow_service.delete_node(tenant_id=tenant_id, flow_id=flow_id, node_id=node_id)
        except HTTPException:
            raise
        except Exception as e:
            raise _to_http_exception("deleting node", e)

    @router.get("/{flow_id}/validate")
    async def validate_flow(request: Request, flow_id: str):
        try:
            tenant_id = get_tenant_id(request)
            return await flow_service.validate_flow(tenant_id=tenant_id, flow_id=flow_id)
        except HTTPException:
            raise
        except Exception as e:
            raise _to_http_exception("validating flow", e)

    @router.post("/{flow_id}/activate")
    async def activate_flow(request: Request, flow_id: str):
        """
        Validates the flow and makes it the tenant's only active flow.
        A flow with validation errors is refused with 400 and the validation result.
        """
        try:
            tenant_id = get_tenant_id(request)
            return await flow_service.activate_flow(tenant_id=tenant_id, flow_id=flow_id)
        except HTTPException:
            raise
        except Exception as e:
            raise _to_http_exception("activating flow", e)

    @router.post("/{flow_id}/deactivate")
    async def deactivate_flow(request: Request, flow_id: str):
        try:
            tenant_id = get_tenant_id(request)
            return await flow_service.deactivate_flow(tenant_id=tenant_id, flow_id=flow_id)
        except HTTPException:
            raise
        except Exception as e:
            raise _to_http_exception("deactivating flow", e)

    @router.get("/templates")
    async def get_templates(request: Request, business_type: Optional[str] = None):
        get_tenant_id(request)
        return flow_service.get_templates(business_type=business_type)

    @router.post("/templates/{template_id}/create")
    async def create_flow_from_template(request: Request, template_id: str, template_request: CreateFlowFromTemplateRequest):
        try:
            tenant_id = get_tenant_id(request)
            return await flow_service.create_flow_from_template(
                tenant_id=tenant_id,
                template_id=template_id,
                template_request=template_request
            )
        except HTTPException:
            raise
        except Exception as e:
            raise _to_http_exception("creating flow from template", e)

    return router
