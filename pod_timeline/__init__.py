"""pod-timeline: per-pod lifecycle milestones reconstructed from Kubernetes events."""

__version__ = "0.1.0"
