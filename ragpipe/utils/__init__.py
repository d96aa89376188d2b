"""Shared helpers: errors, logging and concurrency."""
