"""
SDK for API Usage Guard.

Provides quota-guarded access to the model provider.
"""

from .openai_client import GuardedOpenAI, QuotaExceeded

__all__ = ["GuardedOpenAI", "QuotaExceeded"]
