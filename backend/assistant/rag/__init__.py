"""
RAG package.

  retriever.py       RetrievalService: vector index ranking, BM25 fallback
  lexical.py         BM25 index over candidate chunks
  prompt_manager.py  Persona prompts, context block, title prompt
"""

from assistant.rag.retriever import RetrievalService, RetrievedChunk

__all__ = [
    "RetrievalService",
    "RetrievedChunk",
    # prompt_manager and lexical are imported from their own modules
]
