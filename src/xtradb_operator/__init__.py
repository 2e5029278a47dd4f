"""Kubernetes operator for PerconaXtraDB databases."""

__version__ = "0.1.0"
