"""
Deferred extension instances.

Created here, bound to the app in create_app() via init_app().
"""

from flask_limiter import Limiter
from flask_limiter.util import get_remote_address

limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[],  # No global limit, applied per route
    storage_uri="memory://",
)
