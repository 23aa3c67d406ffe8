"""Utility modules."""

from autoserve.utils.geo import haversine_km
from autoserve.utils.pagination import PaginationParams, get_pagination, paginate_query

__all__ = [
    "haversine_km",
    "PaginationParams",
    "get_pagination",
    "paginate_query",
]
