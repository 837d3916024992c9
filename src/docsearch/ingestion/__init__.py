"""
Ingestion — extraction, normalisation, chunking and embedding.

Turns a stored document (raw upload or plain text) into ordered,
embedded passages and records the outcome in the document's status.
"""
