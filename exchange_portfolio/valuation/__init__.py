"""
Exchange Portfolio - Valuation Package.
"""

from .valuator import PortfolioValuator


__all__ = [
    "PortfolioValuator",
]
