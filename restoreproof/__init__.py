"""Automated recoverability verification for protected workloads."""

__version__ = "0.1.0"
