"""CORS for the review console and the staking dashboard."""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from provelt.config import Settings
from provelt.middleware.request_id import REQUEST_ID_HEADER

# Reads (staking, health) and the decide/reconcile POSTs; nothing else is routed.
ALLOWED_METHODS = ["GET", "POST", "OPTIONS"]
ALLOWED_HEADERS = ["Authorization", "Content-Type", REQUEST_ID_HEADER]


def setup_cors(app: FastAPI, settings: Settings) -> None:
    """Allow the configured web origins.

    Credentials are only allowed for an explicit origin list; a wildcard
    origin gets anonymous access to the read endpoints.
    """
    wildcard = "*" in settings.cors_origins
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if wildcard else settings.cors_origins,
        allow_credentials=not wildcard,
        allow_methods=ALLOWED_METHODS,
        allow_headers=ALLOWED_HEADERS,
        expose_headers=[REQUEST_ID_HEADER],
        max_age=settings.cors_max_age_seconds,
    )
