from typing import Optional


class FlowException(Exception):
    """
    This is the base exception for all flow exceptions
    """
    def __init__(self, message: str, status_code: int):
        self.message = message
        self.status_code = status_code
        super().__init__(self.message, self.status_code)

    def __str__(self) -> str:
        return self.message

class FlowDBException(FlowException):
    """
    This is the exception for all flow database exceptions
    """
    def __init__(self, message: str, status_code: int = 500):
        super().__init__(message=message, status_code=status_code)

class FlowServiceException(FlowException):
    """
    This is the exception for all flow service exceptions
    """
    def __init__(self, message: str):
        super().__init__(message=message, status_code=500)

class FlowNotFoundException(FlowException):
    """
    This is the exception when flow or execution is not found
    """
    def __init__(self, message: str):
        super().__init__(message=message, status_code=404)

class FlowValidationException(FlowException):
    """
    This is the exception for flow validation errors
    """
    def __init__(self, message: str):
        super().__init__(message=message, status_code=400)

class FlowDefinitionException(FlowValidationException):
    """
    Raised when the authored graph cannot be executed: missing or duplicate
    start node, unknown start-from node, or an edge pointing at a node that
    does not exist. Always raised before any message is sent.
    """
    pass

class ExecutionStateException(FlowException):
    """
    Raised when an execution is not in the state an operation requires,
    e.g. resuming an execution that is not waiting for input
    """
    def __init__(self, message: str):
        super().__init__(message=message, status_code=409)

class NodeExecutionException(FlowException):
    """
    Raised by the interpreter after a node handler failed and the execution
    was marked failed
    """
    def __init__(self, message: str, node_id: Optional[str] = None, execution_id: Optional[str] = None):
        self.node_id = node_id
        self.execution_id = execution_id
        super().__init__(message=message, status_code=500)

class MessagingGatewayException(FlowException):
    """
    Raised when the messaging channel rejects or fails to deliver a payload
    """
    def __init__(self, message: str, status_code: int = 502):
        super().__init__(message=message, status_code=status_code)

class AIProviderException(FlowException):
    """
    Raised when the generative model provider call fails
    """
    def __init__(self, message: str, status_code: int = 502):
        super().__init__(message=message, status_code=status_code)
