# ---------------------------------
# TYPED EXCEPTIONS
# ---------------------------------


class WorkflowError(Exception):
    """Base class for every error raised by the request workflow."""


class ValidationError(WorkflowError):
    """Raised when caller input is missing or malformed."""


class AuthorizationError(WorkflowError):
    """Raised when the acting user's role or ownership does not allow an action."""


class InvalidStateError(WorkflowError):
    """Raised when a transition is attempted from the wrong status."""


class NotFoundError(WorkflowError):
    def __init__(self, request_id: int):
        self.request_id = request_id
        super().__init__(f"Purchase request {request_id} not found")


class DispatchError(WorkflowError):
    """Raised when the cart dispatcher fails or times out.

    Never surfaces to the approval caller; the dispatch runner records it
    on the request as ``cart_error``.
    """
