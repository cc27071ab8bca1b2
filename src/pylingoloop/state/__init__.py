"""State/store layer.

This package is the single source of truth for how records arriving from the
authoritative list endpoint and the change feed are merged into the local
per-kind mirror.
"""
