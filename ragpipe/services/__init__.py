"""Ingestion and retrieval services."""
