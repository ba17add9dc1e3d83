"""kubepivot — bootstrap self-managed, GitOps-driven Kubernetes clusters."""

__version__ = "0.1.0"
