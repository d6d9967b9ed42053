from typing import Optional, List, Dict, Any
from datetime import datetime

# Utils
from utils.log_utils import LogUtil

# Database
from database.flow_db import FlowDB

# Services
from services.flow_validator_service import FlowValidatorService
from services.flow_template_service import FlowTemplateService

# Models
from models.flow_data import FlowData, parse_flow_node
from models.validation_data import ValidationResult
from models.request.flow_request import CreateFlowRequest, UpdateFlowRequest, CreateFlowFromTemplateRequest
from models.response.flow.flow_template_data import FlowTemplateData

# Exceptions
from exceptions.flow_exception import (
    FlowException,
    FlowServiceException,
    FlowNotFoundException,
    FlowValidationException,
)

class FlowService:
    def __init__(self, log_util: LogUtil, flow_db: FlowDB,
                 flow_validator_service: FlowValidatorService, flow_template_service: FlowTemplateService):
        self.log_util = log_util
        self.flow_db = flow_db
        self.flow_validator_service = flow_validator_service
        self.flow_template_service = flow_template_service

    async def create_flow(self, tenant_id: str, flow_request: CreateFlowRequest) -> FlowData:
        """
        Create a new, inactive flow for the tenant
        """
        try:
            flow = FlowData(
                tenant_id=tenant_id,
                name=flow_request.name,
                description=flow_request.description,
                business_type=flow_request.business_type,
                is_active=False,
                is_template=flow_request.is_template,
                version=flow_request.version,
                variables=flow_request.variables,
                nodes=flow_request.nodes,
                metadata=flow_request.metadata,
                created_at=datetime.utcnow(),
                updated_at=datetime.utcnow()
            )
            flow.entry_node_id = flow.derive_entry_node_id()

            saved_flow = await self.flow_db.create_flow(flow)

            self.log_util.info(
                service_name="FlowService",
                message=f"Flow '{flow.name}' created successfully with ID: {saved_flow.id}"
            )
            return saved_flow

        except FlowException:
            raise
        except Exception as e:
            self.log_util.error(
                service_name="FlowService",
                message=f"Error creating flow: {str(e)}"
            )
            raise FlowServiceException(message=f"Error creating flow: {str(e)}")

    async def get_flows_list(
        self,
        tenant_id: str,
        business_type: Optional[str] = None,
        is_active: Optional[bool] = None,
        is_template: Optional[bool] = None
    ) -> List[FlowData]:
        try:
            flows = await self.flow_db.get_flows(
                tenant_id=tenant_id,
                business_type=business_type,
                is_active=is_active,
                is_template=is_template
            )
            return flows or []
        except FlowException:
            raise
        except Exception as e:
            self.log_util.error(
                service_name="FlowService",
                message=f"Error getting flows list: {str(e)}"
            )
            raise FlowServiceException(message=f"Error getting flows list: {str(e)}")

    async def get_flow_detail(self, tenant_id: str, flow_id: str) -> FlowData:
        flow = await self.flow_db.get_flow(tenant_id, flow_id)
        if flow is None:
            raise FlowNotFoundException(message=f"Flow {flow_id} not found")
        return flow

    async def update_flow(self, tenant_id: str, flow_id: str, flow_request: UpdateFlowRequest) -> FlowData:
        """
        Apply a partial update. The entry node is re-derived from the nodes.
        """
        try:
            existing_flow = await self.get_flow_detail(tenant_id, flow_id)

            changes = {field: getattr(flow_request, field) for field in flow_request.model_fields_set}
            updated_flow = existing_flow.model_copy(update=changes)
            return await self._save(tenant_id, flow_id, updated_flow)

        except FlowException:
            raise
        except Exception as e:
            self.log_util.error(
                service_name="FlowService",
                message=f"Error updating flow: {str(e)}"
            )
            raise FlowServiceException(message=f"Error updating flow: {str(e)}")

    async def delete_flow(self, tenant_id: str, flow_id: str) -> bool:
        deleted = await self.flow_db.delete_flow(tenant_id, flow_id)
        if not deleted:
            raise FlowNotFoundException(message=f"Flow {flow_id} not found")
        self.log_util.info(service_name="FlowService", message=f"Flow {flow_id} deleted")
        return True

    async def _save(self, tenant_id: str, flow_id: str, flow: FlowData) -> FlowData:
        flow.entry_node_id = flow.derive_entry_node_id()
        saved_flow = await self.flow_db.update_flow(tenant_id, flow_id, flow)
        if saved_flow is None:
            raise FlowNotFoundException(message=f"Flow {flow_id} not found")
        return saved_flow

    # Node operations
    async def add_node(self, tenant_id: str, flow_id: str, node_data: Dict[str, Any]) -> FlowData:
        try:
            flow = await self.get_flow_detail(tenant_id, flow_id)
            node = parse_flow_node(node_data)
            if flow.get_node(node.id) is not None:
                raise FlowServiceException(message=f"Node {node.id} already exists", code="DUPLICATE_NODE_ID", status_code=409)
            flow.nodes.append(node)
            return await self._save(tenant_id, flow_id, flow)
        except FlowException:
            raise
        except Exception as e:
            self.log_util.error(service_name="FlowService", message=f"Error adding node: {str(e)}")
            raise FlowServiceException(message=f"Error adding node: {str(e)}", status_code=400)

    async def update_node(self, tenant_id: str, flow_id: str, node_id: str, node_data: Dict[str, Any]) -> FlowData:
        try:
            flow = await self.get_flow_detail(tenant_id, flow_id)
            existing_node = flow.get_node(node_id)
            if existing_node is None:
                raise FlowServiceException(message=f"Node {node_id} not found", code="NODE_NOT_FOUND", status_code=404)

            merged = existing_node.model_dump()
            merged.update(node_data)
            merged["id"] = node_id
            node = parse_flow_node(merged)
            flow.nodes = [node if item.id == node_id else item for item in flow.nodes]
            return await self._save(tenant_id, flow_id, flow)
        except FlowException:
            raise
        except Exception as e:
            self.log_util.error(service_name="FlowService", message=f"Error updating node: {str(e)}")
            raise FlowServiceException(message=f"Error updating node: {str(e)}", status_code=400)

    async def delete_node(self, tenant_id: str, flow_id: str, node_id: str) -> FlowData:
        """
        Remove the node and every connection pointing at it
        """
        flow = await self.get_flow_detail(tenant_id, flow_id)
        if flow.get_node(node_id) is None:
            raise FlowServiceException(message=f"Node {node_id} not found", code="NODE_NOT_FOUND", status_code=404)

        flow.nodes = [node for node in flow.nodes if node.id != node_id]
        for node in flow.nodes:
            node.connections = [connection for connection in node.connections if connection.targetNodeId != node_id]
        return await self._save(tenant_id, flow_id, flow)

    # Validation and activation
    async def validate_flow(self, tenant_id: str, flow_id: str) -> ValidationResult:
        flow = await self.get_flow_detail(tenant_id, flow_id)
        return self.flow_validator_service.validate(flow)

    async def activate_flow(self, tenant_id: str, flow_id: str) -> FlowData:
        """
        Make the flow the tenant's single active flow. Invalid flows are refused.
        """
        flow = await self.get_flow_detail(tenant_id, flow_id)
        validation_result = self.flow_validator_service.validate(flow)
        if not validation_result.is_valid:
            self.log_util.warning(
                service_name="FlowService",
                message=f"Flow {flow_id} not activated, validation errors: {validation_result.error_codes()}"
            )
            raise FlowValidationException(
                message=f"Flow {flow_id} has validation errors",
                validation_result=validation_result
            )

        await self.flow_db.deactivate_flows(tenant_id, exclude_flow_id=flow_id)
        activated = await self.flow_db.set_flow_active(tenant_id, flow_id, True)
        if activated is None:
            raise FlowNotFoundException(message=f"Flow {flow_id} not found")

        self.log_util.info(service_name="FlowService", message=f"Flow {flow_id} activated for tenant {tenant_id}")
        return activated

    async def deactivate_flow(self, tenant_id: str, flow_id: str) -> FlowData:
        deactivated = await self.flow_db.set_flow_active(tenant_id, flow_id, False)
        if deactivated is None:
            raise FlowNotFoundException(message=f"Flow {flow_id} not found")
        self.log_util.info(service_name="FlowService", message=f"Flow {flow_id} deactivated for tenant {tenant_id}")
        return deactivated

    async def deactivate_all_flows(self, tenant_id: str) -> int:
        count = await self.flow_db.deactivate_flows(tenant_id)
        self.log_util.info(service_name="FlowService", message=f"Deactivated {count} flow(s) for tenant {tenant_id}")
        return count

    async def get_active_flow(self, tenant_id: str) -> Optional[FlowData]:
        return await self.flow_db.get_active_flow(tenant_id)

    # Templates
    def get_templates(self, business_type: Optional[str] = None) -> List[FlowTemplateData]:
        return self.flow_template_service.get_templates(business_type)

    async def create_flow_from_template(
        self,
        tenant_id: str,
        template_id: str,
        template_request: CreateFlowFromTemplateRequest
    ) -> FlowData:
        template = self.flow_template_service.get_template(template_id)
        if template is None:
            raise FlowServiceException(
                message=f"Flow template {template_id} not found",
                code="FLOW_TEMPLATE_NOT_FOUND",
                status_code=404
            )
        flow = self.flow_template_service.build_flow_from_template(
            tenant_id=tenant_id,
            template=template,
            name=template_request.name,
            description=template_request.description,
            customization=template_request.variables
        )
        return await self.flow_db.create_flow(flow)
