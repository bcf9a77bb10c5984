"""Pure building blocks: workspace paths, backoff, errors and types."""
