"""aiohttp middleware for the recurpay API."""

from .correlation_id import correlation_id_middleware, get_request_id
from .error_handler import error_middleware

__all__ = ["correlation_id_middleware", "error_middleware", "get_request_id"]
