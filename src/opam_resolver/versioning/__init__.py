"""Version ordering, range satisfaction and version selection."""
