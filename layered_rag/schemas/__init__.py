from layered_rag.schemas.ask import AskRequest, AskResponse, ErrorResponse, SourceCitation
from layered_rag.schemas.document import (
    BulkFailure,
    BulkTransitionRequest,
    BulkTransitionResponse,
    DocumentCreate,
    DocumentOut,
    DocumentUpdate,
    LayerStats,
    LayerStatsResponse,
    PendingCountResponse,
    TransitionRequest,
)
from layered_rag.schemas.internal import AskParams

__all__ = [
    "AskParams",
    "AskRequest",
    "AskResponse",
    "BulkFailure",
    "BulkTransitionRequest",
    "BulkTransitionResponse",
    "DocumentCreate",
    "DocumentOut",
    "DocumentUpdate",
    "ErrorResponse",
    "LayerStats",
    "LayerStatsResponse",
    "PendingCountResponse",
    "SourceCitation",
    "TransitionRequest",
]
