from pydantic import BaseModel, Field


class ProcessMessageRequest(BaseModel):
    """
    Request model for an inbound message of a conversation.
    Transport specifics (webhook payloads, channel ids) are handled upstream.
    """
    phone_number: str = Field(..., description="Channel identity of the end user")
    message: str = Field(..., description="Text content of the inbound message")

    class Config:
        json_schema_extra = {
            "example": {
                "phone_number": "+1234567890",
                "message": "Hello"
            }
        }


class EnableDynamicProcessingRequest(BaseModel):
    flow_id: str
