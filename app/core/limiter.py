"""
Shared slowapi limiter.

Keyed on the Authorization header so each token gets its own allowance.
Registered on app.state in app.main; routes decorate with @limiter.limit().
"""
from slowapi import Limiter

from app.features.users.dependencies import get_authorization_header


limiter = Limiter(key_func=get_authorization_header)
