"""Kubernetes-facing services used by the PerconaXtraDB handlers."""
