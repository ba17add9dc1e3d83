"""CLI command groups (thin wrappers over core use cases)."""
