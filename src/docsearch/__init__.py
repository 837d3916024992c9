"""
docsearch — section-aware chunking, embedding ingestion and hybrid search.

Documents are normalised, split into overlapping passages, embedded and
stored; queries combine full-text and vector retrieval into one ranked,
deduplicated result set grouped by source document.
"""

__version__ = "0.1.0"
