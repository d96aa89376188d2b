"""Concrete adapters for readers, model services and vector stores."""
