"""Abstract contracts for the pipeline's external collaborators."""
