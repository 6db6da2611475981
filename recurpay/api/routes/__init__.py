"""Route registration modules for the recurpay API."""

from .health_routes import register_health_routes
from .notification_routes import register_notification_routes
from .occurrence_routes import register_occurrence_routes
from .recurring_routes import register_recurring_routes

__all__ = [
    "register_health_routes",
    "register_notification_routes",
    "register_occurrence_routes",
    "register_recurring_routes",
]
