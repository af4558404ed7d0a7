"""HTTP client wiring: a requests Session with a default timeout and optional local bind"""

import ipaddress
import logging
from typing import Optional

import requests
from requests.adapters import HTTPAdapter

from .constants import REQUEST_TIMEOUT

logger = logging.getLogger(__name__)


class SourceAddressAdapter(HTTPAdapter):
    """
    Transport adapter that applies a default timeout and binds sockets to a local address.

    Binding to ``0.0.0.0`` or ``::`` forces IPv4 or IPv6 without picking an interface.
    """

    def __init__(self, timeout: float = REQUEST_TIMEOUT, source_address: Optional[str] = None, **kwargs):
        # HTTPAdapter.__init__ builds the pool manager, so set these first
        self.timeout = timeout
        self.source_address = source_address
        super().__init__(**kwargs)

    def init_poolmanager(self, connections, maxsize, block=False, **pool_kwargs):
        if self.source_address is not None:
            pool_kwargs["source_address"] = (self.source_address, 0)
        super().init_poolmanager(connections, maxsize, block=block, **pool_kwargs)

    def send(self, request, timeout=None, **kwargs):
        if timeout is None:
            timeout = self.timeout
        return super().send(request, timeout=timeout, **kwargs)


def resolve_local_address(ipv4: Optional[str] = None, ipv6: Optional[str] = None) -> Optional[str]:
    """
    Map the --ipv4/--ipv6 flags to a bind address.

    Raises:
        ValueError: if both are given or an address has the wrong family
    """
    if ipv4 is not None and ipv6 is not None:
        raise ValueError("--ipv4 and --ipv6 are mutually exclusive")
    if ipv4 is not None:
        if ipaddress.ip_address(ipv4).version != 4:
            raise ValueError(f"{ipv4} is not an IPv4 address")
        return ipv4
    if ipv6 is not None:
        if ipaddress.ip_address(ipv6).version != 6:
            raise ValueError(f"{ipv6} is not an IPv6 address")
        return ipv6
    return None


def build_session(local_address: Optional[str] = None, timeout: float = REQUEST_TIMEOUT) -> requests.Session:
    """Build the session used for every request of a run."""
    session = requests.Session()
    adapter = SourceAddressAdapter(timeout=timeout, source_address=local_address)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    if local_address:
        logger.debug("Binding outgoing connections to %s", local_address)
    return session
