"""
Conversation Engine Service
Executes a stored flow turn by turn against inbound user messages.

Each turn starts at the context's current node, hands it the user input and
keeps executing the following nodes (auto-advance) until a node waits for
input, the flow ends, or the step limit is hit. The resulting state is
written back with an optimistic version check.
"""
from datetime import datetime
from typing import Optional, List, Dict, Any

# Utils
from utils.log_utils import LogUtil
from utils.environment_utils import EnvironmentUtils
from utils.lock_utils import ConversationLockRegistry
from utils.template_utils import render_template

# Database
from database.flow_db import FlowDB

# Exceptions
from exceptions.flow_exception import (
    FlowException,
    FlowServiceException,
    FlowNotFoundException,
    FlowDefinitionException,
    ExecutionNotFoundException,
    ExecutionConflictException,
    NodeExecutionException,
)

# Models
from models.flow_data import FlowData, FlowNode, FlowConnection
from models.execution_context import ExecutionContext, ExecutionHistoryEntry
from models.bot_response import BotResponse, NodeExecutionResult, ProcessInputResult

# Services
from services.condition_service import ConditionService
from services.reply_validation_service import ReplyValidationService
from services.action_executor_service import ActionExecutorService, IntegrationExecutorService

DEFAULT_END_MESSAGE = "Thank you! This conversation has ended."
MAX_CHOICE_BUTTONS = 3
PENDING_RESPONSES_KEY = "pending_responses"


class ConversationEngineService:
    def __init__(
        self,
        log_util: LogUtil,
        environment_utils: EnvironmentUtils,
        flow_db: FlowDB,
        condition_service: ConditionService,
        reply_validation_service: ReplyValidationService,
        action_executor_service: ActionExecutorService,
        integration_executor_service: IntegrationExecutorService,
        lock_registry: Optional[ConversationLockRegistry] = None
    ):
        self.log_util = log_util
        self.flow_db = flow_db
        self.condition_service = condition_service
        self.reply_validation_service = reply_validation_service
        self.action_executor_service = action_executor_service
        self.integration_executor_service = integration_executor_service
        self.locks = lock_registry or ConversationLockRegistry()
        self.max_auto_advance_steps = int(environment_utils.get_env_variable("MAX_AUTO_ADVANCE_STEPS"))

        self._handlers = {
            "start": self._handle_start,
            "message": self._handle_message,
            "question": self._handle_question,
            "condition": self._handle_condition,
            "action": self._handle_action,
            "integration": self._handle_integration,
            "end": self._handle_end,
        }

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------
    async def start_conversation_flow(
        self,
        tenant_id: str,
        conversation_id: str,
        channel_identity: str,
        flow_id: str
    ) -> ExecutionContext:
        """
        Create an active execution context positioned on the flow's start node.
        The start node itself runs with the first processed message.

        Raises:
            FlowNotFoundException: FLOW_NOT_FOUND
            FlowDefinitionException: NO_START_NODE
            ExecutionConflictException: EXECUTION_ALREADY_ACTIVE
        """
        try:
            async with self.locks.hold(tenant_id, conversation_id):
                return await self._start(tenant_id, conversation_id, channel_identity, flow_id)
        except FlowException:
            raise
        except Exception as e:
            self.log_util.error(
                service_name="ConversationEngineService",
                message=f"[START] Error starting flow {flow_id} for conversation {conversation_id}: {str(e)}"
            )
            raise FlowServiceException(message=f"Error starting conversation flow: {str(e)}")

    async def process_user_input(
        self,
        tenant_id: str,
        conversation_id: str,
        user_input: Optional[str]
    ) -> ProcessInputResult:
        """
        Run one turn of an existing conversation.

        Raises:
            ExecutionNotFoundException: EXECUTION_NOT_FOUND when no active context exists
            FlowDefinitionException / NodeExecutionException / ExecutionConflictException
        """
        try:
            async with self.locks.hold(tenant_id, conversation_id):
                context = await self.flow_db.get_active_execution(tenant_id, conversation_id)
                if context is None:
                    raise ExecutionNotFoundException(
                        message=f"No active execution for conversation {conversation_id}"
                    )
                return await self._run_turn(context, user_input)
        except FlowException:
            raise
        except Exception as e:
            self.log_util.error(
                service_name="ConversationEngineService",
                message=f"[TURN] Error processing input for conversation {conversation_id}: {str(e)}"
            )
            raise FlowServiceException(message=f"Error processing user input: {str(e)}")

    async def process_turn(
        self,
        tenant_id: str,
        conversation_id: str,
        channel_identity: str,
        flow_id: str,
        user_input: Optional[str]
    ) -> ProcessInputResult:
        """
        Load the active context, or start one on flow_id, and process the input.
        Both steps run under the same conversation lock.

        A context whose flow was deleted is closed as "reset" and the
        conversation restarts on flow_id.
        """
        try:
            async with self.locks.hold(tenant_id, conversation_id):
                context = await self.flow_db.get_active_execution(tenant_id, conversation_id)
                if context is not None and context.flow_id != flow_id:
                    if await self.flow_db.get_flow(tenant_id, context.flow_id) is None:
                        self.log_util.warning(
                            service_name="ConversationEngineService",
                            message=f"[TURN] Flow {context.flow_id} of conversation {conversation_id} no longer exists, restarting on flow {flow_id}"
                        )
                        await self.flow_db.close_active_execution(tenant_id, conversation_id, status="reset")
                        context = None
                if context is None:
                    context = await self._start(tenant_id, conversation_id, channel_identity, flow_id)
                return await self._run_turn(context, user_input)
        except FlowException:
            raise
        except Exception as e:
            self.log_util.error(
                service_name="ConversationEngineService",
                message=f"[TURN] Error processing turn for conversation {conversation_id}: {str(e)}"
            )
            raise FlowServiceException(message=f"Error processing conversation turn: {str(e)}")

    async def get_conversation_context(self, tenant_id: str, conversation_id: str) -> Optional[ExecutionContext]:
        return await self.flow_db.get_active_execution(tenant_id, conversation_id)

    async def reset_conversation(self, tenant_id: str, conversation_id: str) -> bool:
        """
        Archive the active context with status "reset". Returns whether one existed.
        """
        async with self.locks.hold(tenant_id, conversation_id):
            reset = await self.flow_db.close_active_execution(tenant_id, conversation_id, status="reset")
        self.log_util.info(
            service_name="ConversationEngineService",
            message=f"[RESET] Conversation {conversation_id} reset: {reset}"
        )
        return reset

    # ------------------------------------------------------------------
    # Turn processing
    # ------------------------------------------------------------------
    async def _start(
        self,
        tenant_id: str,
        conversation_id: str,
        channel_identity: str,
        flow_id: str
    ) -> ExecutionContext:
        flow = await self._load_flow(tenant_id, flow_id)
        start_node = self._find_start_node(flow)

        existing = await self.flow_db.get_active_execution(tenant_id, conversation_id)
        if existing is not None:
            raise ExecutionConflictException(
                message=f"Conversation {conversation_id} already has an active execution",
                code="EXECUTION_ALREADY_ACTIVE"
            )

        context = ExecutionContext(
            tenant_id=tenant_id,
            conversation_id=conversation_id,
            phone_number=channel_identity,
            flow_id=flow_id,
            current_node_id=start_node.id,
            variables={variable.name: variable.defaultValue for variable in flow.variables}
        )
        created = await self.flow_db.create_execution(context)
        self.log_util.info(
            service_name="ConversationEngineService",
            message=f"[START] Conversation {conversation_id} started on flow {flow_id} at node {start_node.id}"
        )
        return created

    async def _load_flow(self, tenant_id: str, flow_id: str) -> FlowData:
        flow = await self.flow_db.get_flow(tenant_id, flow_id)
        if flow is None:
            raise FlowNotFoundException(message=f"Flow {flow_id} not found")
        return flow

    def _find_start_node(self, flow: FlowData) -> FlowNode:
        if flow.entry_node_id:
            entry = flow.get_node(flow.entry_node_id)
            if entry is not None and entry.type == "start":
                return entry
        start_nodes = flow.start_nodes()
        if not start_nodes:
            raise FlowDefinitionException(
                message=f"Flow {flow.id} has no start node",
                code="NO_START_NODE"
            )
        return start_nodes[0]

    async def _run_turn(self, context: ExecutionContext, user_input: Optional[str]) -> ProcessInputResult:
        flow = await self._load_flow(context.tenant_id, context.flow_id)
        nodes_by_id = flow.nodes_by_id()

        variables: Dict[str, Any] = dict(context.variables)
        session_data: Dict[str, Any] = dict(context.session_data)
        history: List[ExecutionHistoryEntry] = list(context.execution_history)
        # Responses of a turn that stopped on a failed side effect are delivered first
        responses: List[BotResponse] = [
            BotResponse.model_validate(item) for item in session_data.pop(PENDING_RESPONSES_KEY, [])
        ]

        current_node_id = context.current_node_id
        node_input = user_input
        executed = 0
        ended = False

        while True:
            try:
                if executed >= self.max_auto_advance_steps:
                    raise FlowDefinitionException(
                        message=f"Auto-advance exceeded {self.max_auto_advance_steps} steps at node {current_node_id}",
                        code="AUTO_ADVANCE_LIMIT_EXCEEDED"
                    )
                node = nodes_by_id.get(current_node_id)
                if node is None:
                    raise FlowDefinitionException(
                        message=f"Node {current_node_id} not found in flow {flow.id}",
                        code="NODE_NOT_FOUND"
                    )
                result = await self._execute_node(node, node_input, variables, session_data, context)
            except FlowException as e:
                self.log_util.error(
                    service_name="ConversationEngineService",
                    message=f"[TURN] Conversation {context.conversation_id} failed at node {current_node_id}: {e.code} {e.message}"
                )
                # Only a failed side effect commits the nodes completed before it,
                # any other error leaves the stored context as it was
                if isinstance(e, NodeExecutionException) and executed > 0:
                    await self._park(context, current_node_id, variables, session_data, history, responses)
                raise

            variables.update(result.variable_updates)
            session_data.update(result.session_updates)
            if result.response is not None:
                responses.append(result.response)
            history.append(ExecutionHistoryEntry(
                node_id=node.id,
                node_type=node.type,
                user_input=node_input,
                response=result.response.content if result.response else None,
                next_node_id=result.next_node_id
            ))
            executed += 1

            if result.should_end_conversation:
                ended = True
                break
            if result.waiting_for_input or result.next_node_id is None:
                break

            next_node = nodes_by_id.get(result.next_node_id)
            if next_node is not None and next_node.type == "question":
                # A question reached by transition always asks first
                session_data.pop(self._asked_key(next_node.id), None)
            current_node_id = result.next_node_id
            node_input = None

        saved = await self._persist(
            context,
            current_node_id,
            variables,
            session_data,
            history,
            "completed" if ended else "active"
        )

        self.log_util.info(
            service_name="ConversationEngineService",
            message=f"[TURN] Conversation {context.conversation_id} ran {executed} node(s), now at {saved.current_node_id} (ended={ended})"
        )

        return ProcessInputResult(
            flow_id=saved.flow_id,
            responses=responses,
            next_node_id=saved.current_node_id,
            should_end_conversation=ended,
            variables=saved.variables
        )

    async def _park(
        self,
        context: ExecutionContext,
        current_node_id: str,
        variables: Dict[str, Any],
        session_data: Dict[str, Any],
        history: List[ExecutionHistoryEntry],
        responses: List[BotResponse]
    ) -> None:
        """
        Save the turn up to the failing node. Its undelivered responses are
        kept for the next turn. A conflict here is logged, the node failure
        is what the caller sees.
        """
        parked_session = dict(session_data)
        if responses:
            parked_session[PENDING_RESPONSES_KEY] = [response.model_dump() for response in responses]
        try:
            await self._persist(context, current_node_id, variables, parked_session, history, "active")
        except ExecutionConflictException as conflict:
            self.log_util.warning(
                service_name="ConversationEngineService",
                message=f"[TURN] Could not park conversation {context.conversation_id} at node {current_node_id}: {conflict.message}"
            )

    async def _persist(
        self,
        context: ExecutionContext,
        current_node_id: str,
        variables: Dict[str, Any],
        session_data: Dict[str, Any],
        history: List[ExecutionHistoryEntry],
        status: str
    ) -> ExecutionContext:
        update: Dict[str, Any] = {
            "current_node_id": current_node_id,
            "variables": variables,
            "session_data": session_data,
            "execution_history": history,
            "status": status,
        }
        if status != "active":
            update["completed_at"] = datetime.utcnow()

        saved = await self.flow_db.update_execution(context.model_copy(update=update), expected_version=context.version)
        if saved is None:
            raise ExecutionConflictException(
                message=f"Execution for conversation {context.conversation_id} was modified concurrently"
            )
        return saved

    async def _execute_node(
        self,
        node: FlowNode,
        user_input: Optional[str],
        variables: Dict[str, Any],
        session_data: Dict[str, Any],
        context: ExecutionContext
    ) -> NodeExecutionResult:
        handler = self._handlers.get(node.type)
        if handler is None:
            raise FlowDefinitionException(
                message=f"Unknown node type: {node.type}",
                code="UNKNOWN_NODE_TYPE"
            )
        self.log_util.debug(
            service_name="ConversationEngineService",
            message=f"[NODE] Executing {node.type} node {node.id} for conversation {context.conversation_id}"
        )
        return await handler(node, user_input, variables, session_data, context)

    # ------------------------------------------------------------------
    # Connection resolution
    # ------------------------------------------------------------------
    def _next_connection(self, node: FlowNode) -> Optional[FlowConnection]:
        for connection in node.connections:
            if not connection.label or connection.label == "next":
                return connection
        return node.connections[0] if node.connections else None

    def _require_next(self, node: FlowNode, connection: Optional[FlowConnection]) -> str:
        if connection is None:
            raise FlowDefinitionException(
                message=f"Node {node.id} has no outgoing connection",
                code="DEAD_END"
            )
        return connection.targetNodeId

    def _labelled_connection(self, node: FlowNode, label: str) -> Optional[FlowConnection]:
        for connection in node.connections:
            if connection.label and connection.label.lower() == label.lower():
                return connection
        return None

    @staticmethod
    def _asked_key(node_id: str) -> str:
        return f"question_{node_id}_asked"

    # ------------------------------------------------------------------
    # Node handlers
    # ------------------------------------------------------------------
    async def _handle_start(self, node, user_input, variables, session_data, context) -> NodeExecutionResult:
        return NodeExecutionResult(next_node_id=self._require_next(node, self._next_connection(node)))

    async def _handle_message(self, node, user_input, variables, session_data, context) -> NodeExecutionResult:
        config = node.configuration
        next_node_id = self._require_next(node, self._next_connection(node))
        content = render_template(config.messageText or "", variables)

        if config.buttons:
            response = BotResponse(
                content=content,
                message_type="interactive",
                metadata={"buttons": [
                    {"id": button.id, "title": render_template(button.title, variables)}
                    for button in config.buttons
                ]}
            )
        else:
            response = BotResponse(content=content)
        return NodeExecutionResult(response=response, next_node_id=next_node_id)

    async def _handle_question(self, node, user_input, variables, session_data, context) -> NodeExecutionResult:
        config = node.configuration
        asked_key = self._asked_key(node.id)

        # Phase 1: ask and wait
        if not session_data.get(asked_key):
            return NodeExecutionResult(
                response=self._question_prompt(node, variables),
                session_updates={asked_key: True},
                waiting_for_input=True
            )

        # Phase 2: validate the answer
        validation = self.reply_validation_service.validate_reply(user_input, config)
        if not validation.is_valid:
            failures_key = f"question_{node.id}_failures"
            return NodeExecutionResult(
                response=BotResponse(content=validation.error_message or "Invalid input. Please try again."),
                session_updates={failures_key: int(session_data.get(failures_key, 0)) + 1},
                waiting_for_input=True
            )

        connection = None
        if config.inputType == "choice" and validation.processed_value is not None:
            connection = self._labelled_connection(node, str(validation.processed_value))
        if connection is None:
            connection = self._next_connection(node)
        next_node_id = self._require_next(node, connection)

        variable_updates = {}
        if config.variableName:
            variable_updates[config.variableName] = validation.processed_value
        return NodeExecutionResult(
            next_node_id=next_node_id,
            variable_updates=variable_updates,
            session_updates={f"question_{node.id}_answered": True}
        )

    def _question_prompt(self, node, variables: Dict[str, Any]) -> BotResponse:
        config = node.configuration
        content = render_template(config.questionText or "", variables)
        choices = config.choices or []
        if config.inputType != "choice" or not choices:
            return BotResponse(content=content)
        if len(choices) <= MAX_CHOICE_BUTTONS:
            return BotResponse(
                content=content,
                message_type="interactive",
                metadata={"buttons": [{"id": choice.value, "title": choice.label} for choice in choices]}
            )
        # Too many options for buttons, list them instead
        options = "\n".join(f"• {choice.label}" for choice in choices)
        return BotResponse(content=f"{content}\n\n{options}")

    async def _handle_condition(self, node, user_input, variables, session_data, context) -> NodeExecutionResult:
        condition_met = self.condition_service.evaluate(node.configuration, variables)
        connection = self._labelled_connection(node, "true" if condition_met else "false")
        if connection is None:
            for candidate in node.connections:
                if not candidate.label or candidate.label.lower() == "default":
                    connection = candidate
                    break
        if connection is None:
            raise FlowDefinitionException(
                message=f"Condition node {node.id} has no connection for result {condition_met}",
                code="DEAD_END"
            )
        return NodeExecutionResult(next_node_id=connection.targetNodeId)

    async def _handle_action(self, node, user_input, variables, session_data, context) -> NodeExecutionResult:
        config = node.configuration
        next_node_id = self._require_next(node, self._next_connection(node))
        try:
            result = await self.action_executor_service.execute(
                action_type=config.actionType or "",
                action_parameters=config.actionParameters,
                variables=variables,
                tenant_id=context.tenant_id,
                conversation_id=context.conversation_id
            )
        except NodeExecutionException as e:
            e.node_id = node.id
            raise
        return self._side_effect_result(config, result, variables, next_node_id)

    async def _handle_integration(self, node, user_input, variables, session_data, context) -> NodeExecutionResult:
        config = node.configuration
        next_node_id = self._require_next(node, self._next_connection(node))
        try:
            result = await self.integration_executor_service.execute(
                integration_type=config.integrationType or "",
                integration_config=config.integrationConfig,
                variables=variables,
                tenant_id=context.tenant_id,
                conversation_id=context.conversation_id
            )
        except NodeExecutionException as e:
            e.node_id = node.id
            raise
        return self._side_effect_result(config, result, variables, next_node_id)

    def _side_effect_result(self, config, result: Any, variables: Dict[str, Any], next_node_id: str) -> NodeExecutionResult:
        variable_updates = {}
        if config.resultVariable:
            variable_updates[config.resultVariable] = result
        response = None
        if config.successMessage:
            response = BotResponse(content=render_template(config.successMessage, {**variables, **variable_updates}))
        return NodeExecutionResult(
            response=response,
            next_node_id=next_node_id,
            variable_updates=variable_updates
        )

    async def _handle_end(self, node, user_input, variables, session_data, context) -> NodeExecutionResult:
        message = node.configuration.endMessage or DEFAULT_END_MESSAGE
        return NodeExecutionResult(
            response=BotResponse(content=render_template(message, variables)),
            should_end_conversation=True
        )
