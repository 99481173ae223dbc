"""Price matrix upserts."""

from .price_matrix import PriceMatrix, resolve_owner

__all__ = ["PriceMatrix", "resolve_owner"]
