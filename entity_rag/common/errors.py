"""
Error taxonomy shared by the retrieval pipeline and its adapters.
"""


class EntityRagError(Exception):
    """Base class for entity-rag errors."""
    pass


class ConfigurationError(EntityRagError):
    """A required collaborator (e.g. the vector store) is not configured."""
    pass


class CollaboratorUnavailable(EntityRagError):
    """An optional collaborator (e.g. the web search provider) cannot be reached."""
    pass


class TransientIOError(EntityRagError):
    """An embed, query or upsert round trip failed."""
    pass
