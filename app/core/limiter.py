"""
Shared rate limiter.

Keyed on the Authorization header so each caller is limited separately.
"""
from slowapi import Limiter

from app.features.users.dependencies import get_authorization_header


limiter = Limiter(key_func=get_authorization_header)
