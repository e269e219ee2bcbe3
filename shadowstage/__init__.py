"""
Shadow staging overlay: stage file edits, preview them, commit them atomically,
and gate mutating actions behind idempotency keys and confirmation tokens.
"""

from .core.config import VERSION

__version__ = VERSION
