from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any, Literal
from datetime import datetime


class ExecutionHistoryEntry(BaseModel):
    """
    One node execution inside a conversation turn (append-only audit log)
    """
    node_id: str
    node_type: str
    user_input: Optional[str] = None
    response: Optional[str] = None
    next_node_id: Optional[str] = None
    timestamp: datetime = Field(default_factory=datetime.utcnow)


class ExecutionContext(BaseModel):
    """
    Persisted state of one conversation running through a flow.
    Exactly one context per (tenant_id, conversation_id) can be active.
    """
    id: Optional[str] = None  # MongoDB _id
    tenant_id: str
    conversation_id: str
    phone_number: str = Field(..., description="Channel identity of the end user (phone number for WhatsApp)")
    flow_id: str
    current_node_id: str
    variables: Dict[str, Any] = Field(default_factory=dict)
    session_data: Dict[str, Any] = Field(default_factory=dict, description="Per-node bookkeeping, e.g. question_<id>_asked")
    execution_history: List[ExecutionHistoryEntry] = Field(default_factory=list)
    status: Literal["active", "completed", "reset"] = "active"
    version: int = Field(default=1, description="Incremented on every persisted turn")
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
    completed_at: Optional[datetime] = None
