"""Runtime observability."""
