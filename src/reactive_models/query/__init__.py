"""Query layer: cached, self-refreshing observations of vault entries."""
