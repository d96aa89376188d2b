"""Typed data models for documents, chunks, records and pipeline results."""
