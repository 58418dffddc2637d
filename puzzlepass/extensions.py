"""
Deferred extension instances.

Created here, bound to the app in create_app() via init_app().
"""

from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from flask_login import LoginManager
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address

db = SQLAlchemy()
migrate = Migrate()
login_manager = LoginManager()

# Per-IP abuse guard on /api/*. Storage comes from RATELIMIT_STORAGE_URI.
limiter = Limiter(key_func=get_remote_address, default_limits=[])

# Identity is the bearer token on each request; nothing is kept in the session
login_manager.session_protection = None


@login_manager.request_loader
def load_caller(request):
    """Resolve the bearer ID token on a request. Imports lazily to avoid circular deps."""
    from puzzlepass.auth import caller_from_request

    return caller_from_request(request)
