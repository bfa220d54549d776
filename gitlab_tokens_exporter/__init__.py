"""Exports GitLab access tokens' remaining validity days as Prometheus metrics."""

__version__ = "2.3.1"
