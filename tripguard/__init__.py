"""tripguard: rate-limit aware retries and fallback caching for upstream APIs."""

__version__ = "0.1.0"
