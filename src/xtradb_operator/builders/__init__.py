"""Builders for dependent Kubernetes objects."""
