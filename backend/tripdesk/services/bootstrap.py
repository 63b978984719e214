"""Initial board data: one attempt at the bootstrap endpoint, else the static fixture."""
from __future__ import annotations

from typing import Optional, Tuple

import httpx

from tripdesk.core.config import Settings, get_settings
from tripdesk.core.logging import logger
from tripdesk.models.trips import BootstrapPayload
from tripdesk.services.fixtures import fixture_payload

BOOTSTRAP_PATH = "/api/bootstrap"


def fetch_bootstrap(
    base_url: str,
    timeout: float = 10.0,
    transport: Optional[httpx.BaseTransport] = None,
) -> BootstrapPayload:
    """GET the bootstrap payload. Raises RuntimeError on any transport or decoding failure."""
    url = f"{base_url.rstrip('/')}{BOOTSTRAP_PATH}"
    try:
        with httpx.Client(timeout=timeout, transport=transport) as client:
            response = client.get(url, headers={"Accept": "application/json"})
            response.raise_for_status()
            body = response.json()
        if not isinstance(body, dict):
            raise ValueError("expected a JSON object")
        return BootstrapPayload.model_validate(body)
    except (httpx.HTTPError, ValueError) as exc:
        raise RuntimeError(f"Bootstrap request failed: {exc}") from exc


def load_bootstrap(
    settings: Optional[Settings] = None,
    transport: Optional[httpx.BaseTransport] = None,
) -> Tuple[BootstrapPayload, str]:
    """
    Return the board payload and where it came from ("remote" or "fixture").

    Exactly one request is made. No retry; any failure falls back to the
    fixture so the board always starts.
    """
    settings = settings or get_settings()
    base_url = settings.resolved_bootstrap_url()
    if base_url is None:
        logger.info("No bootstrap URL configured, using fixture data")
        return fixture_payload(), "fixture"

    try:
        payload = fetch_bootstrap(base_url, settings.bootstrap_timeout_seconds, transport=transport)
    except RuntimeError as exc:
        logger.warning("Bootstrap unavailable, using fixture data", url=base_url, error=str(exc))
        return fixture_payload(), "fixture"

    logger.info("Bootstrap loaded", url=base_url, trips=len(payload.trips), loads=len(payload.loads))
    return payload, "remote"
