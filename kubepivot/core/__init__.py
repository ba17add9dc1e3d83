"""Core domain: models, workflow engine, services."""
