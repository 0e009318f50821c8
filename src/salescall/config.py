"""Startup configuration validation.

Checks that all required environment variables are set before the server
accepts webhooks.  Called from bot.py at startup so that a missing key
causes a clear failure rather than a silent mid-call crash.
"""

import os
import sys
import logging

logger = logging.getLogger(__name__)

REQUIRED_VARS = [
    "OPENAI_API_KEY",
    "TWILIO_ACCOUNT_SID",
    "TWILIO_AUTH_TOKEN",
    "TWILIO_PHONE_NUMBER",
    "BASE_URL",
]

OPTIONAL_VARS = [
    "OPENAI_MODEL",
    "OPENAI_ANALYSIS_MODEL",
    "DASHBOARD_LEADS_URL",
    "DASHBOARD_CAMPAIGNS_URL",
    "DASHBOARD_CALLS_URL",
    "DASHBOARD_WEBHOOK_SECRET",
    "GATHER_TIMEOUT_SECONDS",
    "LOG_LEVEL",
    "PORT",
]

DASHBOARD_VARS = ["DASHBOARD_LEADS_URL", "DASHBOARD_CAMPAIGNS_URL", "DASHBOARD_CALLS_URL"]


def validate_config() -> None:
    """Validate environment variables at startup.

    Exits the process with a clear error if any required variable is missing
    or empty.  Logs warnings for missing optional variables.
    """
    missing = [var for var in REQUIRED_VARS if not os.getenv(var)]

    if missing:
        print(
            f"\nFATAL: Missing required environment variables:\n"
            f"  {', '.join(missing)}\n"
            f"\nSet them in .env (local) or as deployment secrets (production).\n",
            file=sys.stderr,
        )
        sys.exit(1)

    for var in OPTIONAL_VARS:
        if not os.getenv(var):
            logger.warning("Optional env var %s is not set", var)


def dashboard_enabled() -> bool:
    """True when every dashboard endpoint is configured."""
    return all(os.getenv(var) for var in DASHBOARD_VARS)


def gather_timeout() -> int:
    raw = os.getenv("GATHER_TIMEOUT_SECONDS", "")
    try:
        return max(1, int(raw)) if raw else 5
    except ValueError:
        logger.warning("Invalid GATHER_TIMEOUT_SECONDS %r, using 5", raw)
        return 5
