"""Reverse DNS resolution of connecting peers using dnspython."""

import socket
import time
from collections import OrderedDict
from typing import TYPE_CHECKING, ClassVar, cast

import dns.exception
import dns.resolver
import dns.reversename
from loguru import logger

from netserver.core.access import PeerIdentity
from netserver.core.exceptions import PeerResolutionError

if TYPE_CHECKING:
    from dns.resolver import Resolver

# DNS resolver constants
DEFAULT_TIMEOUT = 1.0  # seconds
DEFAULT_LIFETIME = 3.0  # seconds
CACHE_SIZE = 1024  # hostnames kept, least recently used dropped first
CACHE_TTL = 300.0  # seconds a resolved hostname stays valid


class PeerResolver:
    """Turns a peer address into a ``PeerIdentity``.

    The system resolver is tried first, then a PTR query through dnspython
    configured from the host's resolver settings.
    """

    # Shared by every resolver in the process; a forked worker inherits it.
    # address -> (hostname, expiry on the monotonic clock)
    _hostname_cache: ClassVar[OrderedDict[str, tuple[str, float]]] = OrderedDict()

    def __init__(self) -> None:
        self._resolver: Resolver | None = None
        self._resolver_failed = False

    def _get_resolver(self) -> "Resolver | None":
        if self._resolver is None and not self._resolver_failed:
            try:
                resolver = cast("Resolver", dns.resolver.Resolver())
            except dns.exception.DNSException as e:
                logger.debug(f"No usable resolver configuration: {e}")
                self._resolver_failed = True
                return None
            resolver.timeout = DEFAULT_TIMEOUT
            resolver.lifetime = DEFAULT_LIFETIME
            self._resolver = resolver
        return self._resolver

    def _try_system_dns(self, address: str) -> str | None:
        """Try reverse resolution using the system resolver."""
        try:
            hostname, _, _ = socket.gethostbyaddr(address)
            return hostname
        except (socket.herror, socket.gaierror, UnicodeError) as e:
            logger.debug(f"System reverse lookup failed for {address}: {e}")
            return None

    def _try_ptr_query(self, address: str) -> str | None:
        """Try a PTR query with dnspython."""
        resolver = self._get_resolver()
        if resolver is None:
            return None
        try:
            answer = resolver.resolve(dns.reversename.from_address(address), "PTR")
            return str(answer[0]).rstrip(".")
        except (dns.exception.DNSException, ValueError) as e:
            logger.debug(f"PTR query failed for {address}: {e}")
            return None

    def _cached(self, address: str) -> str | None:
        entry = self._hostname_cache.get(address)
        if entry is None:
            return None
        name, expires = entry
        if time.monotonic() >= expires:
            del self._hostname_cache[address]
            return None
        self._hostname_cache.move_to_end(address)
        return name

    def _remember(self, address: str, name: str) -> None:
        self._hostname_cache[address] = (name, time.monotonic() + CACHE_TTL)
        self._hostname_cache.move_to_end(address)
        while len(self._hostname_cache) > CACHE_SIZE:
            self._hostname_cache.popitem(last=False)

    def hostname(self, address: str) -> str:
        """Resolve ``address`` to a hostname.

        Raises:
            PeerResolutionError: If no method produced a hostname
        """
        if name := self._cached(address):
            return name

        if name := self._try_system_dns(address):
            self._remember(address, name)
            return name

        if name := self._try_ptr_query(address):
            self._remember(address, name)
            return name

        raise PeerResolutionError(f"Could not resolve {address} using any available method")

    def identify(self, address: str, lookup: bool = True) -> PeerIdentity:
        """Build the identity of a peer, falling back to the numeric address.

        Args:
            address: Dotted-quad address of the peer
            lookup: Attempt reverse resolution at all
        """
        if not lookup:
            return PeerIdentity(hostname=address, address=address)
        try:
            return PeerIdentity(hostname=self.hostname(address), address=address)
        except PeerResolutionError as e:
            logger.debug(str(e))
            return PeerIdentity(hostname=address, address=address)

    def identify_socket(self, sock: socket.socket, lookup: bool = True) -> PeerIdentity:
        """Identify the peer of a connected socket."""
        address = sock.getpeername()[0]
        return self.identify(address, lookup)


# Global resolver instance
peer_resolver = PeerResolver()
