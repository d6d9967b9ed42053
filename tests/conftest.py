import pytest
from typing import Optional, List, Dict
from datetime import datetime
from unittest.mock import MagicMock
from bson import ObjectId

from utils.log_utils import LogUtil
from utils.environment_utils import EnvironmentUtils
from utils.lock_utils import ConversationLockRegistry
from exceptions.flow_exception import ExecutionConflictException
from models.flow_data import FlowData
from models.execution_context import ExecutionContext
from services.flow_validator_service import FlowValidatorService
from services.flow_template_service import FlowTemplateService
from services.flow_service import FlowService
from services.condition_service import ConditionService
from services.reply_validation_service import ReplyValidationService
from services.action_executor_service import ActionExecutorService, IntegrationExecutorService
from services.conversation_engine_service import ConversationEngineService
from services.static_message_processor_service import StaticMessageProcessorService
from services.dynamic_message_processor_service import DynamicMessageProcessorService

from flow_builders import build_flow, name_flow_nodes


class InMemoryFlowDB:
    """
    Dict-backed stand-in for FlowDB with the same method contracts,
    including the version check on execution updates.
    """

    def __init__(self):
        self.flows: Dict[str, FlowData] = {}
        self.executions: Dict[str, ExecutionContext] = {}
        self.update_calls = 0

    async def ensure_indexes(self) -> None:
        return None

    def close(self) -> None:
        return None

    # Flows
    async def create_flow(self, flow: FlowData) -> FlowData:
        flow_id = str(ObjectId())
        stored = flow.model_copy(update={"id": flow_id}, deep=True)
        self.flows[flow_id] = stored
        return stored.model_copy(deep=True)

    async def get_flow(self, tenant_id: str, flow_id: str) -> Optional[FlowData]:
        flow = self.flows.get(flow_id)
        if flow is None or flow.tenant_id != tenant_id:
            return None
        return flow.model_copy(deep=True)

    async def get_flows(self, tenant_id: str, business_type: Optional[str] = None,
                        is_active: Optional[bool] = None, is_template: Optional[bool] = None) -> List[FlowData]:
        flows = [flow for flow in self.flows.values() if flow.tenant_id == tenant_id]
        if business_type is not None:
            flows = [flow for flow in flows if flow.business_type == business_type]
        if is_active is not None:
            flows = [flow for flow in flows if flow.is_active == is_active]
        if is_template is not None:
            flows = [flow for flow in flows if flow.is_template == is_template]
        return [flow.model_copy(deep=True) for flow in flows]

    async def update_flow(self, tenant_id: str, flow_id: str, flow: FlowData) -> Optional[FlowData]:
        existing = self.flows.get(flow_id)
        if existing is None or existing.tenant_id != tenant_id:
            return None
        stored = flow.model_copy(
            update={"id": flow_id, "tenant_id": tenant_id, "created_at": existing.created_at, "updated_at": datetime.utcnow()},
            deep=True
        )
        self.flows[flow_id] = stored
        return stored.model_copy(deep=True)

    async def delete_flow(self, tenant_id: str, flow_id: str) -> bool:
        existing = self.flows.get(flow_id)
        if existing is None or existing.tenant_id != tenant_id:
            return False
        del self.flows[flow_id]
        return True

    async def set_flow_active(self, tenant_id: str, flow_id: str, is_active: bool) -> Optional[FlowData]:
        existing = self.flows.get(flow_id)
        if existing is None or existing.tenant_id != tenant_id:
            return None
        existing.is_active = is_active
        return existing.model_copy(deep=True)

    async def deactivate_flows(self, tenant_id: str, exclude_flow_id: Optional[str] = None) -> int:
        count = 0
        for flow_id, flow in self.flows.items():
            if flow.tenant_id == tenant_id and flow.is_active and flow_id != exclude_flow_id:
                flow.is_active = False
                count += 1
        return count

    async def get_active_flow(self, tenant_id: str) -> Optional[FlowData]:
        for flow in self.flows.values():
            if flow.tenant_id == tenant_id and flow.is_active:
                return flow.model_copy(deep=True)
        return None

    # Executions
    def _find_active(self, tenant_id: str, conversation_id: str) -> Optional[ExecutionContext]:
        for context in self.executions.values():
            if context.tenant_id == tenant_id and context.conversation_id == conversation_id and context.status == "active":
                return context
        return None

    async def get_active_execution(self, tenant_id: str, conversation_id: str) -> Optional[ExecutionContext]:
        context = self._find_active(tenant_id, conversation_id)
        return context.model_copy(deep=True) if context else None

    async def create_execution(self, context: ExecutionContext) -> ExecutionContext:
        if self._find_active(context.tenant_id, context.conversation_id) is not None:
            raise ExecutionConflictException(
                message=f"Conversation {context.conversation_id} already has an active execution",
                code="EXECUTION_ALREADY_ACTIVE"
            )
        execution_id = str(ObjectId())
        stored = context.model_copy(update={"id": execution_id}, deep=True)
        self.executions[execution_id] = stored
        return stored.model_copy(deep=True)

    async def update_execution(self, context: ExecutionContext, expected_version: int) -> Optional[ExecutionContext]:
        self.update_calls += 1
        stored = self.executions.get(context.id)
        if stored is None or stored.version != expected_version or stored.status != "active":
            return None
        updated = context.model_copy(
            update={
                "version": expected_version + 1,
                "tenant_id": stored.tenant_id,
                "conversation_id": stored.conversation_id,
                "created_at": stored.created_at,
                "updated_at": datetime.utcnow(),
            },
            deep=True
        )
        self.executions[context.id] = updated
        return updated.model_copy(deep=True)

    async def close_active_execution(self, tenant_id: str, conversation_id: str, status: str) -> bool:
        context = self._find_active(tenant_id, conversation_id)
        if context is None:
            return False
        context.status = status
        context.version += 1
        context.completed_at = datetime.utcnow()
        return True


@pytest.fixture
def log_util():
    return MagicMock(spec=LogUtil)


@pytest.fixture
def environment_utils(log_util):
    environment_utils = EnvironmentUtils(log_util=log_util)
    environment_utils.env_variables.update({
        "MONGO_USERNAME": "",
        "MONGO_PASSWORD": "",
        "MONGO_AUTH_SOURCE": "admin",
        "MONGO_HOST": "localhost",
        "MONGO_PORT": 27017,
        "ACTION_SERVICE_URL": "http://actions.test/actions",
        "STATIC_PROCESSOR_URL": "",
        "HTTP_TIMEOUT_SECONDS": 5.0,
        "MAX_AUTO_ADVANCE_STEPS": 25,
    })
    return environment_utils


@pytest.fixture
def flow_db():
    return InMemoryFlowDB()


@pytest.fixture
def flow_service(log_util, flow_db):
    return FlowService(
        log_util=log_util,
        flow_db=flow_db,
        flow_validator_service=FlowValidatorService(),
        flow_template_service=FlowTemplateService(log_util=log_util)
    )


@pytest.fixture
def action_executor_service(log_util, environment_utils):
    return ActionExecutorService(log_util=log_util, environment_utils=environment_utils)


@pytest.fixture
def integration_executor_service(log_util, environment_utils):
    return IntegrationExecutorService(log_util=log_util, environment_utils=environment_utils)


@pytest.fixture
def engine(log_util, environment_utils, flow_db, action_executor_service, integration_executor_service):
    return ConversationEngineService(
        log_util=log_util,
        environment_utils=environment_utils,
        flow_db=flow_db,
        condition_service=ConditionService(log_util=log_util),
        reply_validation_service=ReplyValidationService(log_util=log_util),
        action_executor_service=action_executor_service,
        integration_executor_service=integration_executor_service,
        lock_registry=ConversationLockRegistry()
    )


@pytest.fixture
def static_message_processor_service(log_util, environment_utils):
    return StaticMessageProcessorService(log_util=log_util, environment_utils=environment_utils)


@pytest.fixture
def dynamic_message_processor_service(log_util, flow_service, engine, static_message_processor_service):
    return DynamicMessageProcessorService(
        log_util=log_util,
        flow_service=flow_service,
        conversation_engine_service=engine,
        static_message_processor_service=static_message_processor_service
    )


@pytest.fixture
async def stored_flow(flow_db):
    """The name flow, saved for TENANT_ID"""
    return await flow_db.create_flow(build_flow(name_flow_nodes()))
