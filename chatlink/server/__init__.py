from .app import (
    ActivityAuthenticator,
    CallerResolver,
    bearer_token,
    create_app,
    permissions_from_header,
    permissions_from_request_state,
    shared_secret_authenticator,
)

__all__ = [
    "create_app",
    "bearer_token",
    "permissions_from_header",
    "permissions_from_request_state",
    "shared_secret_authenticator",
    "ActivityAuthenticator",
    "CallerResolver",
]
