"""HTTP gateway: request contexts, resolver orchestration and the FastAPI app."""

from .context import ContextBuilder, RequestContext
from .orchestrator import OperationCall, OperationRequest, Orchestrator
from .registry import FieldSpec, ObjectType, OperationRegistry, OperationSpec, TypeRegistry

__all__ = [
    "ContextBuilder",
    "FieldSpec",
    "ObjectType",
    "OperationCall",
    "OperationRegistry",
    "OperationRequest",
    "OperationSpec",
    "Orchestrator",
    "RequestContext",
    "TypeRegistry",
]
