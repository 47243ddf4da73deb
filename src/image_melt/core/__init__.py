"""Merge engine and run configuration."""
