from assistant.vectorstore.base import QueryResult, VectorRecord, VectorStoreBase
from assistant.vectorstore.factory import build_vector_store

__all__ = ["VectorStoreBase", "VectorRecord", "QueryResult", "build_vector_store"]
