from typing import Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from models.validation_data import ValidationResult

class FlowException(Exception):
    """
    This is the base exception for all flow exceptions
    """
    def __init__(self, message: str, status_code: int, code: Optional[str] = None):
        self.message = message
        self.status_code = status_code
        self.code = code
        super().__init__(self.message, self.status_code)

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message}

class FlowDBException(FlowException):
    """
    This is the exception for all flow database exceptions
    """
    def __init__(self, message: str, status_code: int = 500):
        self.message = message
        self.status_code = status_code
        super().__init__(message=self.message, status_code=self.status_code, code="DATABASE_ERROR")

class FlowServiceException(FlowException):
    """
    This is the exception for all flow service exceptions
    """
    def __init__(self, message: str, code: str = "FLOW_SERVICE_ERROR", status_code: int = 500):
        self.message = message
        self.status_code = status_code
        super().__init__(message=self.message, status_code=self.status_code, code=code)

class FlowNotFoundException(FlowException):
    """
    This is the exception when flow is not found
    """
    def __init__(self, message: str):
        self.message = message
        self.status_code = 404
        super().__init__(message=self.message, status_code=self.status_code, code="FLOW_NOT_FOUND")

class FlowValidationException(FlowException):
    """
    This is the exception for flow validation errors
    """
    def __init__(self, message: str, validation_result: Optional["ValidationResult"] = None):
        self.message = message
        self.status_code = 400
        self.validation_result = validation_result
        super().__init__(message=self.message, status_code=self.status_code, code="FLOW_VALIDATION_FAILED")

    def to_dict(self) -> dict:
        detail = super().to_dict()
        if self.validation_result is not None:
            detail["validation"] = self.validation_result.model_dump(mode="json")
        return detail

class FlowDefinitionException(FlowException):
    """
    Raised when a stored flow cannot be executed as defined
    (no start node, dangling node reference, dead end, unknown node type)
    """
    def __init__(self, message: str, code: str):
        self.message = message
        self.status_code = 422
        super().__init__(message=self.message, status_code=self.status_code, code=code)

class ExecutionNotFoundException(FlowException):
    """
    Raised when a conversation has no active execution context
    """
    def __init__(self, message: str):
        self.message = message
        self.status_code = 404
        super().__init__(message=self.message, status_code=self.status_code, code="EXECUTION_NOT_FOUND")

class ExecutionConflictException(FlowException):
    """
    Raised when an execution context changed underneath the current turn
    or a second active context would be created
    """
    def __init__(self, message: str, code: str = "EXECUTION_CONFLICT"):
        self.message = message
        self.status_code = 409
        super().__init__(message=self.message, status_code=self.status_code, code=code)

class NodeExecutionException(FlowException):
    """
    Raised when an action or integration node fails its side effect
    """
    def __init__(self, message: str, code: str = "ACTION_FAILED", node_id: Optional[str] = None):
        self.message = message
        self.status_code = 502
        self.node_id = node_id
        super().__init__(message=self.message, status_code=self.status_code, code=code)

class DynamicProcessingException(FlowException):
    """
    Raised by the dynamic message processor, wraps the underlying failure
    """
    def __init__(self, message: str, code: str, cause: Optional[Exception] = None):
        self.message = message
        self.cause = cause
        self.status_code = cause.status_code if isinstance(cause, FlowException) else 500
        super().__init__(message=self.message, status_code=self.status_code, code=code)

    def to_dict(self) -> dict:
        detail = super().to_dict()
        if isinstance(self.cause, FlowException):
            detail["cause"] = self.cause.to_dict()
        elif self.cause is not None:
            detail["cause"] = {"code": None, "message": str(self.cause)}
        return detail
