from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any

from models.flow_data import FlowNode, FlowVariable


class CreateFlowRequest(BaseModel):
    """
    Request model for creating a flow.
    entry_node_id and is_active are never taken from the client.
    """
    name: str = Field(..., min_length=1)
    description: Optional[str] = ""
    business_type: Optional[str] = "general"
    is_template: bool = False
    version: str = "1.0.0"
    variables: List[FlowVariable] = Field(default_factory=list)
    nodes: List[FlowNode] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)

    class Config:
        json_schema_extra = {
            "example": {
                "name": "Age check",
                "business_type": "general",
                "variables": [{"name": "age", "type": "number"}],
                "nodes": [
                    {"id": "start", "type": "start", "connections": [{"targetNodeId": "ask_age"}]},
                    {
                        "id": "ask_age",
                        "type": "question",
                        "configuration": {"questionText": "How old are you?", "variableName": "age", "inputType": "number"},
                        "connections": [{"targetNodeId": "reply"}]
                    },
                    {
                        "id": "reply",
                        "type": "message",
                        "configuration": {"messageText": "You are {{age}}"},
                        "connections": [{"targetNodeId": "end"}]
                    },
                    {"id": "end", "type": "end"}
                ]
            }
        }


class UpdateFlowRequest(BaseModel):
    """
    Partial update, only the fields that are sent are changed
    """
    name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    business_type: Optional[str] = None
    is_template: Optional[bool] = None
    version: Optional[str] = None
    variables: Optional[List[FlowVariable]] = None
    nodes: Optional[List[FlowNode]] = None
    metadata: Optional[Dict[str, Any]] = None


class CreateFlowFromTemplateRequest(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    variables: Dict[str, Any] = Field(default_factory=dict, description="Customization values substituted into message and question texts")
