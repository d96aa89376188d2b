"""Ingestion stages: tokenizer, enrichment, semantic chunking and vector writes."""
