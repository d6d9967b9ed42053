from pydantic import BaseModel
from typing import Optional, Dict, Any
from datetime import datetime


class ConversationStatus(BaseModel):
    conversation_id: str
    is_active: bool
    flow_id: Optional[str] = None
    current_node_id: Optional[str] = None
    variables: Dict[str, Any] = {}
    turns: int = 0
    updated_at: Optional[datetime] = None
