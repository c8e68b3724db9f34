"""Natural-language questions to tenant-isolated, read-only warehouse queries."""
from .pipeline import PipelineContext, QueryPipeline
from .schemas import ConversationTurn, QueryResponse

__all__ = ["PipelineContext", "QueryPipeline", "ConversationTurn", "QueryResponse"]
__version__ = "0.1.0"
