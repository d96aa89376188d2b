"""Query-time retrieval over the vector collection."""
