from .engine import WorkflowEngine
from .schemas import RequestDraft, RequestUpdate
