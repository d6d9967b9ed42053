from pydantic import BaseModel, Field, computed_field
from typing import Optional, List, Dict, Any, Literal


class BotResponse(BaseModel):
    """
    A single outbound message produced by a node.
    Interactive responses carry their buttons in metadata.
    """
    content: str
    message_type: Literal["text", "interactive"] = "text"
    metadata: Optional[Dict[str, Any]] = None


class NodeExecutionResult(BaseModel):
    """
    Outcome of running one node handler
    """
    response: Optional[BotResponse] = None
    next_node_id: Optional[str] = None
    variable_updates: Dict[str, Any] = Field(default_factory=dict)
    session_updates: Dict[str, Any] = Field(default_factory=dict)
    should_end_conversation: bool = False
    waiting_for_input: bool = False


class ProcessInputResult(BaseModel):
    """
    Outcome of one conversation turn. A turn can run several nodes,
    their responses are kept in execution order.
    """
    flow_id: Optional[str] = None
    responses: List[BotResponse] = Field(default_factory=list)
    next_node_id: Optional[str] = None
    should_end_conversation: bool = False
    variables: Dict[str, Any] = Field(default_factory=dict)

    @computed_field
    @property
    def response(self) -> Optional[BotResponse]:
        if not self.responses:
            return None
        content = "\n\n".join(item.content for item in self.responses if item.content)
        # The last interactive message decides the buttons the user sees
        interactive = [item for item in self.responses if item.message_type == "interactive"]
        if interactive:
            return BotResponse(content=content, message_type="interactive", metadata=interactive[-1].metadata)
        return BotResponse(content=content)
