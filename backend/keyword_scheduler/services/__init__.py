"""Services layer - pipeline stages, orchestration and pure algorithms.

Services coordinate the repository and the integration clients. They hold
no direct database or HTTP access.
"""
