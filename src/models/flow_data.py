from pydantic import BaseModel, Field, Discriminator, ConfigDict, TypeAdapter
from typing import Optional, List, Dict, Any, Union, Literal, Annotated
from datetime import datetime

NodeType = Literal["start", "message", "question", "condition", "action", "integration", "end"]

class FlowNodePosition(BaseModel):
    # Layout metadata from the builder canvas, never read by the engine
    x: float = 0
    y: float = 0

class FlowConnection(BaseModel):
    model_config = ConfigDict(extra='allow')

    id: Optional[str] = None
    targetNodeId: str
    label: Optional[str] = None  # "next", "true", "false", "default" or a choice id

class FlowVariable(BaseModel):
    name: str
    type: Literal["string", "number", "boolean", "date"] = "string"
    defaultValue: Optional[Any] = None
    required: bool = False
    description: Optional[str] = ""

class MessageButton(BaseModel):
    id: str
    title: str

class QuestionChoice(BaseModel):
    value: str
    label: str

class QuestionValidation(BaseModel):
    model_config = ConfigDict(extra='allow')

    minLength: Optional[int] = None
    maxLength: Optional[int] = None
    pattern: Optional[str] = None
    min: Optional[float] = None
    max: Optional[float] = None
    errorMessage: Optional[str] = None

class FlowNodeCondition(BaseModel):
    variable: str
    operator: Literal["equals", "not_equals", "greater_than", "less_than", "contains", "not_contains", "exists"]
    value: Optional[Any] = None

# Node configurations. Required fields stay optional here so drafts can be
# stored; completeness is reported by the flow validator.
class StartConfiguration(BaseModel):
    model_config = ConfigDict(extra='allow')

class MessageConfiguration(BaseModel):
    model_config = ConfigDict(extra='allow')

    messageText: Optional[str] = None
    messageType: Literal["text", "interactive"] = "text"
    buttons: Optional[List[MessageButton]] = None

class QuestionConfiguration(BaseModel):
    model_config = ConfigDict(extra='allow')

    questionText: Optional[str] = None
    variableName: Optional[str] = None
    inputType: Literal["text", "email", "number", "choice", "date", "phone"] = "text"
    choices: Optional[List[QuestionChoice]] = None
    required: bool = True
    validation: Optional[QuestionValidation] = None

class ConditionConfiguration(BaseModel):
    model_config = ConfigDict(extra='allow')

    conditions: Optional[List[FlowNodeCondition]] = None
    logicalOperator: Literal["and", "or"] = "and"

class ActionConfiguration(BaseModel):
    model_config = ConfigDict(extra='allow')

    actionType: Optional[str] = None  # create_transaction, update_transaction, send_notification, call_webhook, set_variable
    actionParameters: Dict[str, Any] = Field(default_factory=dict)
    resultVariable: Optional[str] = None
    successMessage: Optional[str] = None

class IntegrationConfiguration(BaseModel):
    model_config = ConfigDict(extra='allow')

    integrationType: Optional[str] = None  # webhook, api_call
    integrationConfig: Dict[str, Any] = Field(default_factory=dict)
    resultVariable: Optional[str] = None
    successMessage: Optional[str] = None

class EndConfiguration(BaseModel):
    model_config = ConfigDict(extra='allow')

    endMessage: Optional[str] = None

# Base FlowNode with common fields
class BaseFlowNode(BaseModel):
    model_config = ConfigDict(extra='allow')

    id: str
    type: str
    name: str = ""
    position: FlowNodePosition = Field(default_factory=FlowNodePosition)
    connections: List[FlowConnection] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)

class StartNode(BaseFlowNode):
    type: Literal["start"]
    configuration: StartConfiguration = Field(default_factory=StartConfiguration)

class MessageNode(BaseFlowNode):
    type: Literal["message"]
    configuration: MessageConfiguration = Field(default_factory=MessageConfiguration)

class QuestionNode(BaseFlowNode):
    type: Literal["question"]
    configuration: QuestionConfiguration = Field(default_factory=QuestionConfiguration)

class ConditionNode(BaseFlowNode):
    type: Literal["condition"]
    configuration: ConditionConfiguration = Field(default_factory=ConditionConfiguration)

class ActionNode(BaseFlowNode):
    type: Literal["action"]
    configuration: ActionConfiguration = Field(default_factory=ActionConfiguration)

class IntegrationNode(BaseFlowNode):
    type: Literal["integration"]
    configuration: IntegrationConfiguration = Field(default_factory=IntegrationConfiguration)

class EndNode(BaseFlowNode):
    type: Literal["end"]
    configuration: EndConfiguration = Field(default_factory=EndConfiguration)

# Union of all node types with discriminator
FlowNode = Annotated[
    Union[
        StartNode,
        MessageNode,
        QuestionNode,
        ConditionNode,
        ActionNode,
        IntegrationNode,
        EndNode
    ],
    Discriminator("type")
]

_flow_node_adapter = TypeAdapter(FlowNode)

def parse_flow_node(node_data: Dict[str, Any]) -> FlowNode:
    """Build the typed node variant for a raw node dict."""
    return _flow_node_adapter.validate_python(node_data)

class FlowData(BaseModel):
    id: Optional[str] = None
    tenant_id: Optional[str] = None
    name: str
    description: Optional[str] = ""
    business_type: Optional[str] = "general"
    is_active: bool = False
    is_template: bool = False
    version: str = "1.0.0"
    entry_node_id: Optional[str] = None
    variables: List[FlowVariable] = Field(default_factory=list)
    nodes: List[FlowNode] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[datetime] = Field(default_factory=datetime.utcnow)
    updated_at: Optional[datetime] = Field(default_factory=datetime.utcnow)

    def get_node(self, node_id: str) -> Optional[FlowNode]:
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def nodes_by_id(self) -> Dict[str, FlowNode]:
        return {node.id: node for node in self.nodes}

    def start_nodes(self) -> List[FlowNode]:
        return [node for node in self.nodes if node.type == "start"]

    def derive_entry_node_id(self) -> Optional[str]:
        """
        The entry node is the single start node. With zero or several start
        nodes there is no entry node.
        """
        start_nodes = self.start_nodes()
        if len(start_nodes) == 1:
            return start_nodes[0].id
        return None
