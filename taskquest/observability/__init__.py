"""
Observability module for taskquest.

This module provides:
- Metrics collection with Prometheus
"""

__all__ = ["metrics"]
