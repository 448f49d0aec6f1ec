"""
Core application modules.

Process-local infrastructure shared by the AI orchestration services:
configuration, structured logging, metrics, tracing, cancellation,
circuit breaking and response caching.
"""
