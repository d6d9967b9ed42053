from pydantic import BaseModel, Field
from typing import Optional, List


class ValidationIssue(BaseModel):
    """
    A single finding of the flow validator.
    Codes are stable so the builder can highlight the exact node and field.
    """
    code: str = Field(..., description="Stable error or warning code, e.g. MISSING_START_NODE")
    message: str = Field(..., description="Human readable description")
    node_id: Optional[str] = Field(default=None, description="Node the finding is attached to")
    target_node_id: Optional[str] = Field(default=None, description="Offending connection target, if any")


class ValidationResult(BaseModel):
    """
    Outcome of validating a flow. Errors block activation, warnings do not.
    """
    is_valid: bool = Field(default=True, description="True when no blocking errors were found")
    errors: List[ValidationIssue] = Field(default_factory=list)
    warnings: List[ValidationIssue] = Field(default_factory=list)

    def error_codes(self) -> List[str]:
        return [issue.code for issue in self.errors]

    def warning_codes(self) -> List[str]:
        return [issue.code for issue in self.warnings]
