"""
Action extraction package.
"""

from .service import FALLBACK_ACTION_RULES, ActionExtractor

__all__ = ["FALLBACK_ACTION_RULES", "ActionExtractor"]
