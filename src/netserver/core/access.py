"""Allow/forbid access control for incoming connections.

Each peer is described by a ``PeerIdentity`` (reverse-resolved hostname and
dotted-quad address). Patterns in the allowed and forbidden lists are regular
expressions searched case-insensitively against the hostname and against the
address; a pattern matching either one counts as a hit for its list.

Decision table:

    =========== ============ ======
    banned hit  allowed hit  result
    =========== ============ ======
    yes         no           deny
    no          yes          allow
    yes         yes          deny
    no          no           deny
    =========== ============ ======

If both lists are empty the server is open and every peer is allowed.

Example:
    policy = AccessPolicy(allowed=[r".*\\.example\\.org"], forbidden=[r"10\\.0\\.0\\.5"])
    policy.evaluate(PeerIdentity("a.example.org", "10.0.0.5"))  # AccessDecision.DENY
"""

import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from enum import Enum
from functools import lru_cache

from loguru import logger

from netserver.core.exceptions import InvalidPatternError


@dataclass(frozen=True)
class PeerIdentity:
    """The host at the other end of a connection.

    Attributes:
        hostname: Reverse-DNS name of the peer, or the address if lookup failed
        address: Dotted-quad IP address of the peer
    """

    hostname: str
    address: str

    def __str__(self) -> str:
        if self.hostname == self.address:
            return self.address
        return f"{self.hostname} ({self.address})"


class AccessDecision(Enum):
    """Outcome of an access-control check."""

    ALLOW = "allow"
    DENY = "deny"

    @property
    def allowed(self) -> bool:
        return self is AccessDecision.ALLOW


@lru_cache(maxsize=256)
def compile_pattern(pattern: str) -> re.Pattern[str]:
    """Compile an access pattern, case-insensitive.

    Raises:
        InvalidPatternError: If the pattern is not a valid regular expression
    """
    try:
        return re.compile(pattern, re.IGNORECASE)
    except re.error as e:
        raise InvalidPatternError(pattern, str(e)) from e


def _first_match(peer: PeerIdentity, patterns: Iterable[str | None]) -> str | None:
    for pattern in patterns:
        if not pattern:
            continue
        regex = compile_pattern(pattern)
        if regex.search(peer.hostname) or regex.search(peer.address):
            return pattern
    return None


def evaluate(
    peer: PeerIdentity,
    allowed: Sequence[str | None] | None,
    forbidden: Sequence[str | None] | None,
) -> AccessDecision:
    """Decide whether ``peer`` may be served.

    Args:
        peer: Identity of the connecting host
        allowed: Patterns of hosts that may connect
        forbidden: Patterns of hosts that are refused

    Returns:
        AccessDecision: ALLOW or DENY according to the decision table

    Raises:
        InvalidPatternError: If a pattern fails to compile
    """
    if not allowed and not forbidden:
        return AccessDecision.ALLOW

    allowed_match = _first_match(peer, allowed or ())
    if allowed_match:
        logger.debug(f"allowed: {allowed_match} matched {peer.hostname} or {peer.address}")

    banned_match = _first_match(peer, forbidden or ())
    if banned_match:
        logger.debug(f"forbidden: {banned_match} matched {peer.hostname} or {peer.address}")

    if allowed_match and not banned_match:
        return AccessDecision.ALLOW
    return AccessDecision.DENY


class AccessPolicy:
    """Allowed/forbidden pattern lists bound together for repeated checks."""

    def __init__(
        self,
        allowed: Sequence[str | None] | None = None,
        forbidden: Sequence[str | None] | None = None,
    ) -> None:
        self.allowed = tuple(allowed or ())
        self.forbidden = tuple(forbidden or ())

    @property
    def is_open(self) -> bool:
        """True when neither list holds a pattern."""
        return not self.allowed and not self.forbidden

    def evaluate(self, peer: PeerIdentity) -> AccessDecision:
        return evaluate(peer, self.allowed, self.forbidden)

    def permits(self, peer: PeerIdentity) -> bool:
        return self.evaluate(peer).allowed

    def __repr__(self) -> str:
        return f"AccessPolicy(allowed={list(self.allowed)!r}, forbidden={list(self.forbidden)!r})"
