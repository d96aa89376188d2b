"""Allow ``python -m ragpipe.cli`` execution."""

from ragpipe.cli.ingest import main

main()
