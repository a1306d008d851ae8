"""Authentication for worker task endpoints.

Task endpoints are called by Cloud Tasks (booking workflow, payment
reconciliation) and Cloud Scheduler (overdue sweep) with a Google-signed
OIDC token. Local development may use a shared secret header instead.
"""

from __future__ import annotations

import base64
import json
import os

from fastapi import Request
from google.auth.transport import requests as google_requests
from google.oauth2 import id_token

from staypay.observability.logging import get_logger
from staypay.observability.redaction import safe_log_context

logger = get_logger(__name__)

# Local dev audience - enables X-Internal-Task-Secret fallback
LOCAL_DEV_AUDIENCE = "staypay-tasks-local"
INTERNAL_SECRET_HEADER = "X-Internal-Task-Secret"


def _unverified_claim(token: str, claim: str) -> str | None:
    """Read one claim from a JWT payload without verifying it.

    Only for diagnostics after verification has already failed; never use
    the result for an auth decision.
    """
    try:
        segment = token.split(".")[1]
        segment += "=" * (-len(segment) % 4)
        payload = json.loads(base64.urlsafe_b64decode(segment))
    except (IndexError, ValueError):
        return None
    if not isinstance(payload, dict):
        return None
    value = payload.get(claim)
    return str(value) if value is not None else None


def extract_bearer_token(request: Request) -> str | None:
    """Return the Bearer token from the Authorization header, if any."""
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        return None
    return auth_header[len("Bearer "):]


def verify_task_oidc(token: str) -> bool:
    """Verify a Google-signed OIDC token for task endpoints.

    Audience comes from TASKS_OIDC_AUDIENCE; when TASKS_OIDC_SERVICE_ACCOUNT
    is set, the token's email claim must match it. Fails closed when the
    audience is not configured.
    """
    if not token:
        return False

    audience = os.environ.get("TASKS_OIDC_AUDIENCE")
    if not audience:
        logger.error(
            "TASKS_OIDC_AUDIENCE not configured - fail closed",
            extra={"extra_fields": safe_log_context(reason="missing_audience_env")},
        )
        return False

    try:
        claims = id_token.verify_oauth2_token(
            token, google_requests.Request(), audience=audience
        )
    except ValueError as e:
        logger.warning(
            "OIDC token verification failed",
            extra={
                "extra_fields": safe_log_context(
                    error=str(e),
                    expected_audience=audience,
                    received_audience=_unverified_claim(token, "aud"),
                )
            },
        )
        return False

    expected_email = os.environ.get("TASKS_OIDC_SERVICE_ACCOUNT")
    if expected_email and claims.get("email", "") != expected_email:
        logger.warning(
            "OIDC service account mismatch",
            extra={
                "extra_fields": safe_log_context(
                    expected_email=expected_email,
                    token_email=claims.get("email", ""),
                )
            },
        )
        return False

    return True


def verify_task_auth(request: Request) -> bool:
    """Authenticate a task request via OIDC, or the internal secret in local dev.

    The X-Internal-Task-Secret header is honoured only when
    TASKS_OIDC_AUDIENCE equals the local dev audience and
    INTERNAL_TASK_SECRET is set.
    """
    if os.environ.get("TASKS_OIDC_AUDIENCE", "") == LOCAL_DEV_AUDIENCE:
        internal_secret = os.environ.get("INTERNAL_TASK_SECRET", "")
        if internal_secret and request.headers.get(INTERNAL_SECRET_HEADER, "") == internal_secret:
            logger.info(
                "task auth via internal secret (local dev)",
                extra={"extra_fields": safe_log_context(auth_method="internal_secret")},
            )
            return True

    token = extract_bearer_token(request)
    if not token:
        logger.warning(
            "task auth failed: missing Bearer token",
            extra={"extra_fields": safe_log_context(reason="missing_bearer_token")},
        )
        return False
    return verify_task_oidc(token)
