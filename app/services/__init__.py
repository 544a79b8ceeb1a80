"""Provider adapters and content services."""
