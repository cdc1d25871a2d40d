"""
Background removal and PDF compression microservice package.

Exposes a provider fallback chain for background removal (local matting model
first, paid APIs after), grouped batch processing, background replacement,
and tool-driven PDF compression, plus the FastAPI application serving them.
"""
