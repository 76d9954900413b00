"""Web API entrypoints."""
