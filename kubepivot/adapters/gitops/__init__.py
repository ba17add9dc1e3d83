"""GitOps controller adapters (repository skeleton + in-cluster bootstrap)."""
