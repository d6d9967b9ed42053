from motor.motor_asyncio import AsyncIOMotorClient
from bson import ObjectId
from bson.errors import InvalidId
import urllib.parse
import threading
import asyncio
from typing import Optional, List, Dict, Any
from datetime import datetime
import weakref
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.errors import NetworkTimeout, ServerSelectionTimeoutError, ConnectionFailure, DuplicateKeyError

# Utils
from utils.log_utils import LogUtil
from utils.environment_utils import EnvironmentUtils

# Exceptions
from exceptions.flow_exception import FlowDBException, ExecutionConflictException

# Models
from models.flow_data import FlowData
from models.execution_context import ExecutionContext

"""
Database class for flow and execution context operations
"""
class FlowDB:
    def __init__(self, log_util: LogUtil, environment_utils: EnvironmentUtils):

        # Initialize logger
        self.log_util = log_util

        # Initialize environment utils
        self.environment_utils = environment_utils

        # Mongo credentials
        self.username = urllib.parse.quote_plus(str(self.environment_utils.get_env_variable("MONGO_USERNAME")))
        self.password = urllib.parse.quote_plus(str(self.environment_utils.get_env_variable("MONGO_PASSWORD")))
        self.auth_source = self.environment_utils.get_env_variable("MONGO_AUTH_SOURCE")
        self.host = self.environment_utils.get_env_variable("MONGO_HOST")
        self.port = int(self.environment_utils.get_env_variable("MONGO_PORT"))
        self.db_name = self.environment_utils.get_env_variable("MONGO_DB_NAME")

        # Mongo Connection Pool Configs
        self.max_pool_size = 50
        self.min_pool_size = 0
        self.max_idle_time_ms = 30000
        self.wait_queue_timeout_ms = 10000
        self.connect_timeout_ms = 10000
        self.server_selection_timeout_ms = 10000
        self.socket_timeout_ms = 10000

        # One client per event loop: {loop_id: {client, db, collections, loop}}
        self._clients = {}

        # Thread-safe initialization lock
        self._client_lock = threading.Lock()

    def _build_uri(self) -> str:
        if self.username:
            return f"mongodb://{self.username}:{self.password}@{self.host}:{self.port}/?authSource={self.auth_source}"
        return f"mongodb://{self.host}:{self.port}/"

    def _get_client_for_current_loop(self):
        """
        Thread-safe method to get the MongoDB client and collections for the current event loop.
        Returns a dictionary with 'client', 'db', and 'collections' for the current event loop.
        """
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            raise RuntimeError("No event loop available. Database methods must be called from an async context.")

        loop_id = id(loop)

        if loop_id in self._clients:
            return self._clients[loop_id]

        with self._client_lock:
            # Double-check after acquiring lock
            if loop_id in self._clients:
                return self._clients[loop_id]

            client = AsyncIOMotorClient(
                self._build_uri(),
                maxPoolSize=self.max_pool_size,
                minPoolSize=self.min_pool_size,
                maxIdleTimeMS=self.max_idle_time_ms,
                waitQueueTimeoutMS=self.wait_queue_timeout_ms,
                connectTimeoutMS=self.connect_timeout_ms,
                serverSelectionTimeoutMS=self.server_selection_timeout_ms,
                socketTimeoutMS=self.socket_timeout_ms,
                retryWrites=True,
                retryReads=True
            )
            db = client[self.db_name]

            client_data = {
                'client': client,
                'db': db,
                'collections': self._initialize_collections_for_client(db),
                'loop': weakref.ref(loop)
            }
            self._clients[loop_id] = client_data

            self.log_util.info(
                service_name="FlowDB",
                message=f"MongoDB client initialized for event loop {loop_id} (lazy initialization)"
            )

            return client_data

    def _initialize_collections_for_client(self, db):
        """
        Initialize MongoDB collections for a given database instance
        """
        return {
            'flows': db.flows,
            'flow_executions': db.flow_executions
        }

    def close(self):
        """
        Close all MongoDB clients and cleanup resources
        """
        with self._client_lock:
            for loop_id, client_data in self._clients.items():
                try:
                    client_data['client'].close()
                except Exception as e:
                    self.log_util.warning(
                        service_name="FlowDB",
                        message=f"Error closing client for loop {loop_id}: {str(e)}"
                    )

            self._clients.clear()

            self.log_util.info(
                service_name="FlowDB",
                message="All MongoDB clients closed"
            )

    def _handle_db_operation(self, operation_name: str, error: Exception) -> None:
        """
        Handle database operation errors with appropriate logging and exception wrapping.

        Args:
            operation_name: Name of the operation that failed
            error: The exception that occurred
        """
        if isinstance(error, (NetworkTimeout, ServerSelectionTimeoutError, ConnectionFailure)):
            self.log_util.error(
                service_name="FlowDB",
                message=f"Database connection error in {operation_name}: {str(error)}"
            )
            raise FlowDBException(
                message=f"Database connection error: {str(error)}",
                status_code=503  # Service Unavailable
            )
        self.log_util.error(
            service_name="FlowDB",
            message=f"Error in {operation_name}: {str(error)}"
        )
        raise FlowDBException(
            message=f"Database error: {str(error)}",
            status_code=500
        )

    @staticmethod
    def _object_id(value: Optional[str]) -> Optional[ObjectId]:
        if not value:
            return None
        try:
            return ObjectId(value)
        except (InvalidId, TypeError):
            return None

    async def ensure_indexes(self) -> None:
        """
        Create the indexes the service relies on. The partial unique index
        allows at most one active execution per (tenant_id, conversation_id).
        """
        client_data = self._get_client_for_current_loop()
        try:
            flows = client_data['collections']['flows']
            executions = client_data['collections']['flow_executions']
            await flows.create_index([("tenant_id", ASCENDING), ("is_active", ASCENDING)], name="tenant_active")
            await executions.create_index(
                [("tenant_id", ASCENDING), ("conversation_id", ASCENDING), ("status", ASCENDING)],
                name="tenant_conversation_status"
            )
            await executions.create_index(
                [("tenant_id", ASCENDING), ("conversation_id", ASCENDING)],
                name="one_active_execution",
                unique=True,
                partialFilterExpression={"status": "active"}
            )
        except Exception as e:
            self._handle_db_operation("ensure_indexes", e)

    # Flow CRUD operations
    async def create_flow(self, flow: FlowData) -> FlowData:
        client_data = self._get_client_for_current_loop()
        try:
            flow_dict = flow.model_dump(exclude={"id"})
            result = await client_data['collections']['flows'].insert_one(flow_dict)
            flow_dict["id"] = str(result.inserted_id)
            return FlowData.model_validate(flow_dict)
        except Exception as e:
            self._handle_db_operation("create_flow", e)

    async def get_flow(self, tenant_id: str, flow_id: str) -> Optional[FlowData]:
        """
        Get a flow by ID, scoped to the tenant
        """
        object_id = self._object_id(flow_id)
        if object_id is None:
            return None
        client_data = self._get_client_for_current_loop()
        try:
            result = await client_data['collections']['flows'].find_one({"_id": object_id, "tenant_id": tenant_id})
            if result is None:
                return None
            result["id"] = str(result["_id"])
            return FlowData.model_validate(result)
        except Exception as e:
            self._handle_db_operation("get_flow", e)

    async def get_flows(
        self,
        tenant_id: str,
        business_type: Optional[str] = None,
        is_active: Optional[bool] = None,
        is_template: Optional[bool] = None
    ) -> List[FlowData]:
        client_data = self._get_client_for_current_loop()
        try:
            query: Dict[str, Any] = {"tenant_id": tenant_id}
            if business_type is not None:
                query["business_type"] = business_type
            if is_active is not None:
                query["is_active"] = is_active
            if is_template is not None:
                query["is_template"] = is_template

            cursor = client_data['collections']['flows'].find(query).sort("updated_at", DESCENDING)
            flows: List[FlowData] = []
            async for flow_dict in cursor:
                flow_dict["id"] = str(flow_dict["_id"])
                flows.append(FlowData.model_validate(flow_dict))
            return flows
        except Exception as e:
            self._handle_db_operation("get_flows", e)

    async def update_flow(self, tenant_id: str, flow_id: str, flow: FlowData) -> Optional[FlowData]:
        object_id = self._object_id(flow_id)
        if object_id is None:
            return None
        client_data = self._get_client_for_current_loop()
        try:
            flow_dict = flow.model_dump(exclude={"id", "tenant_id", "created_at"})
            flow_dict["updated_at"] = datetime.utcnow()
            result = await client_data['collections']['flows'].find_one_and_update(
                {"_id": object_id, "tenant_id": tenant_id},
                {"$set": flow_dict},
                return_document=ReturnDocument.AFTER
            )
            if result is None:
                return None
            result["id"] = str(result["_id"])
            return FlowData.model_validate(result)
        except Exception as e:
            self._handle_db_operation("update_flow", e)

    async def delete_flow(self, tenant_id: str, flow_id: str) -> bool:
        object_id = self._object_id(flow_id)
        if object_id is None:
            return False
        client_data = self._get_client_for_current_loop()
        try:
            result = await client_data['collections']['flows'].delete_one({"_id": object_id, "tenant_id": tenant_id})
            return result.deleted_count > 0
        except Exception as e:
            self._handle_db_operation("delete_flow", e)

    async def set_flow_active(self, tenant_id: str, flow_id: str, is_active: bool) -> Optional[FlowData]:
        object_id = self._object_id(flow_id)
        if object_id is None:
            return None
        client_data = self._get_client_for_current_loop()
        try:
            result = await client_data['collections']['flows'].find_one_and_update(
                {"_id": object_id, "tenant_id": tenant_id},
                {"$set": {"is_active": is_active, "updated_at": datetime.utcnow()}},
                return_document=ReturnDocument.AFTER
            )
            if result is None:
                return None
            result["id"] = str(result["_id"])
            return FlowData.model_validate(result)
        except Exception as e:
            self._handle_db_operation("set_flow_active", e)

    async def deactivate_flows(self, tenant_id: str, exclude_flow_id: Optional[str] = None) -> int:
        """
        Deactivate every active flow of the tenant, optionally keeping one
        """
        client_data = self._get_client_for_current_loop()
        try:
            query: Dict[str, Any] = {"tenant_id": tenant_id, "is_active": True}
            exclude_id = self._object_id(exclude_flow_id)
            if exclude_id is not None:
                query["_id"] = {"$ne": exclude_id}
            result = await client_data['collections']['flows'].update_many(
                query,
                {"$set": {"is_active": False, "updated_at": datetime.utcnow()}}
            )
            return result.modified_count
        except Exception as e:
            self._handle_db_operation("deactivate_flows", e)

    async def get_active_flow(self, tenant_id: str) -> Optional[FlowData]:
        client_data = self._get_client_for_current_loop()
        try:
            result = await client_data['collections']['flows'].find_one(
                {"tenant_id": tenant_id, "is_active": True},
                sort=[("updated_at", DESCENDING)]
            )
            if result is None:
                return None
            result["id"] = str(result["_id"])
            return FlowData.model_validate(result)
        except Exception as e:
            self._handle_db_operation("get_active_flow", e)

    # Execution context operations
    async def get_active_execution(self, tenant_id: str, conversation_id: str) -> Optional[ExecutionContext]:
        client_data = self._get_client_for_current_loop()
        try:
            result = await client_data['collections']['flow_executions'].find_one({
                "tenant_id": tenant_id,
                "conversation_id": conversation_id,
                "status": "active"
            })
            if result is None:
                return None
            result["id"] = str(result["_id"])
            return ExecutionContext.model_validate(result)
        except Exception as e:
            self._handle_db_operation("get_active_execution", e)

    async def create_execution(self, context: ExecutionContext) -> ExecutionContext:
        """
        Insert a new active execution.

        Raises:
            ExecutionConflictException: EXECUTION_ALREADY_ACTIVE when the conversation already has one
        """
        client_data = self._get_client_for_current_loop()
        try:
            context_dict = context.model_dump(exclude={"id"})
            result = await client_data['collections']['flow_executions'].insert_one(context_dict)
            context_dict["id"] = str(result.inserted_id)
            return ExecutionContext.model_validate(context_dict)
        except DuplicateKeyError:
            raise ExecutionConflictException(
                message=f"Conversation {context.conversation_id} already has an active execution",
                code="EXECUTION_ALREADY_ACTIVE"
            )
        except Exception as e:
            self._handle_db_operation("create_execution", e)

    async def update_execution(self, context: ExecutionContext, expected_version: int) -> Optional[ExecutionContext]:
        """
        Write the context only if the stored copy is still active at expected_version.
        The stored version becomes expected_version + 1. Returns None on a version mismatch.
        """
        object_id = self._object_id(context.id)
        if object_id is None:
            return None
        client_data = self._get_client_for_current_loop()
        try:
            context_dict = context.model_dump(exclude={"id", "tenant_id", "conversation_id", "created_at"})
            context_dict["version"] = expected_version + 1
            context_dict["updated_at"] = datetime.utcnow()
            result = await client_data['collections']['flow_executions'].find_one_and_update(
                {"_id": object_id, "version": expected_version, "status": "active"},
                {"$set": context_dict},
                return_document=ReturnDocument.AFTER
            )
            if result is None:
                return None
            result["id"] = str(result["_id"])
            return ExecutionContext.model_validate(result)
        except Exception as e:
            self._handle_db_operation("update_execution", e)

    async def close_active_execution(self, tenant_id: str, conversation_id: str, status: str) -> bool:
        """
        Archive the active execution of a conversation with the given status
        """
        client_data = self._get_client_for_current_loop()
        try:
            now = datetime.utcnow()
            result = await client_data['collections']['flow_executions'].update_one(
                {"tenant_id": tenant_id, "conversation_id": conversation_id, "status": "active"},
                {"$set": {"status": status, "updated_at": now, "completed_at": now}, "$inc": {"version": 1}}
            )
            return result.modified_count > 0
        except Exception as e:
            self._handle_db_operation("close_active_execution", e)
