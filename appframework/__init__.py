"""Building blocks for Kubernetes application operators and their component tests."""

__version__ = "0.1.0"