"""Per-image stages and the pipeline runner."""
