"""
Token and pair symbol normalization for front-ends.

Callers translate user-facing tokens (``ada``, ``bnb``) into pair
symbols (``ADAUSDT``) before asking for prices, and strip the
reference suffix on the way out.
"""

from typing import Iterable, List


def to_pair_symbols(tokens: Iterable[str], reference_asset: str = "USDT") -> List[str]:
    """Uppercase tokens and append the reference suffix; the reference itself is dropped."""
    reference_asset = reference_asset.upper()
    symbols = []
    for token in tokens:
        token = token.strip().upper()
        if not token or token == reference_asset:
            continue
        symbols.append(f"{token}{reference_asset}")
    return symbols


def to_token(symbol: str, reference_asset: str = "USDT") -> str:
    """``ADAUSDT`` -> ``ada``. Symbols without the suffix are only lowercased."""
    reference_asset = reference_asset.upper()
    if symbol.endswith(reference_asset) and len(symbol) > len(reference_asset):
        symbol = symbol[: -len(reference_asset)]
    return symbol.lower()
