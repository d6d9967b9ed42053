from pydantic import BaseModel, Field
from typing import List, Dict, Any


class FlowTemplateData(BaseModel):
    """
    A predefined flow. Node ids inside a template are placeholders that are
    replaced when a flow is created from it.
    """
    id: str
    name: str
    description: str = ""
    business_type: str
    category: str
    nodes: List[Dict[str, Any]] = Field(default_factory=list)
    variables: List[Dict[str, Any]] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)
