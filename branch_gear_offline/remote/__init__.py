"""
Remote data service: interface and REST implementation.
"""

from .base import FILTER_OPERATORS, Filter, Order, RemoteService, eq, in_
from .rest import RestRemoteService, build_query_params

__all__ = [
    "FILTER_OPERATORS",
    "Filter",
    "Order",
    "RemoteService",
    "eq",
    "in_",
    "RestRemoteService",
    "build_query_params",
]
