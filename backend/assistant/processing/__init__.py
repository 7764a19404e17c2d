"""
Document Processing Package
════════════════════════════

The post-approval ingestion steps, run by DocumentLifecycleManager.process():

  Text Extraction → Sentence Chunking → Embedding

Modules
───────
  extractor.py  Plain text / Markdown / PDF / DOCX to text; anything else fails loudly
  chunking.py   Sentence-packing chunker with word overlap and a chars/4 token estimate
  embeddings.py Per-chunk embedding that tolerates individual failures

Every component is stateless and dependency-injected; persistence and state
transitions stay in the lifecycle manager.
"""

from assistant.processing.chunking import ChunkResult, TextChunker, estimate_tokens
from assistant.processing.embeddings import EmbeddingBatchResult, EmbeddingGenerator
from assistant.processing.extractor import extract_text

__all__ = [
    "ChunkResult",
    "TextChunker",
    "estimate_tokens",
    "EmbeddingBatchResult",
    "EmbeddingGenerator",
    "extract_text",
]
