"""Settings, caching and template services."""
