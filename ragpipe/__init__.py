"""ragpipe -- document ingestion and semantic retrieval pipeline.

Reads a directory of documents, enriches them, splits them into
retrieval-sized chunks with a semantic chunker, embeds the chunks into a
vector collection and answers top-K similarity queries against it.
"""

__version__ = "0.1.0"
