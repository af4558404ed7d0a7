"""Connection metadata from the trace endpoint"""

import logging
from typing import Dict

import requests

from .constants import BASE_URL, TRACE_PATH
from .errors import MetadataError
from .types import Metadata

logger = logging.getLogger(__name__)

# trace key -> Metadata field
_TRACE_FIELDS = {"ip": "ip", "colo": "colo", "loc": "country"}


def parse_trace_response(body: str) -> Dict[str, str]:
    """
    Parse the ``key=value`` lines of a trace body.

    Lines without ``=`` are skipped; values may themselves contain ``=``.
    """
    out: Dict[str, str] = {}
    for line in body.splitlines():
        key, sep, value = line.partition("=")
        if not sep:
            if line.strip():
                logger.debug("Skipping malformed trace line: %s", line)
            continue
        out[key.strip()] = value.strip()
    return out


def parse_trace(body: str) -> Metadata:
    """Build Metadata from a trace body; missing keys become "N/A"."""
    data = parse_trace_response(body)
    values = {}
    for key, name in _TRACE_FIELDS.items():
        value = data.get(key)
        if value is None:
            logger.warning("Missing '%s' in trace response", key)
            value = "N/A"
        values[name] = value
    return Metadata(**values)


def fetch_metadata(session: requests.Session, base_url: str = BASE_URL) -> Metadata:
    """
    Fetch the client IP, serving colo and country.

    Raises:
        MetadataError: on any transport error or non-2xx status
    """
    url = f"{base_url.rstrip('/')}/{TRACE_PATH}"
    try:
        response = session.get(url)
    except requests.RequestException as e:
        raise MetadataError(str(e)) from e
    if not 200 <= response.status_code < 300:
        raise MetadataError(response.reason or "unexpected status", status_code=response.status_code)
    return parse_trace(response.text)
