"""Core services: cache, credentials, resolution, sync and scheduling."""
