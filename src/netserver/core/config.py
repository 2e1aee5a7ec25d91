"""Server configuration.

``ServerConfig`` holds every parameter the dispatcher and its engines read:
listening address and port, backlog, timeout, mode, access-control lists,
the connection handler and, in client mode, the trigger.

The recognized options and the types they accept are fixed in
``OPTION_TYPES``. The option names of the classic interface (``hostname``,
``listen``, ``proto``, ``callback``) are accepted as aliases.

Values are checked when the config is constructed, which raises
``ConfigValidationError``. Assignments made later through ``set()`` never
raise: a rejected value is logged, the previous value is kept, and ``set()``
returns False.

Example:
    config = ServerConfig.from_options(port=9000, callback=my_handler, mode="select")
    if not config.set("listen", "ten"):
        ...  # still the old backlog
"""

import importlib
import sys
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field, fields
from pathlib import Path
from types import MappingProxyType
from typing import Any, Final

from loguru import logger

from netserver.core.exceptions import ConfigValidationError
from netserver.core.handlers import echo_handler

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

Handler = Callable[..., Any]
Trigger = Callable[[], Any]

DEFAULT_BACKLOG: Final = 5
DEFAULT_TIMEOUT: Final = 60.0
DEFAULT_MODE: Final = "forking"
DEFAULT_PROTOCOL: Final = "tcp"
MAX_PORT: Final = 65535

# Option name -> accepted types. ``callable`` marks options holding a function.
OPTION_TYPES: Final[Mapping[str, tuple[Any, ...]]] = MappingProxyType(
    {
        "bind_address": (str, type(None)),
        "port": (int, type(None)),
        "backlog": (int,),
        "protocol": (str,),
        "timeout": (int, float),
        "mode": (str,),
        "handler": (callable,),
        "trigger": (callable, type(None)),
        "allowed": (list, tuple),
        "forbidden": (list, tuple),
        "debug": (bool,),
        "reverse_lookup": (bool,),
        "redirect_stdio": (bool,),
        "encoding": (str,),
    }
)

OPTION_ALIASES: Final[Mapping[str, str]] = MappingProxyType(
    {
        "hostname": "bind_address",
        "listen": "backlog",
        "proto": "protocol",
        "callback": "handler",
    }
)


def canonical_option(name: str) -> str:
    """Map an option name or alias to its field name.

    Raises:
        ConfigValidationError: If the option is not recognized
    """
    name = OPTION_ALIASES.get(name, name)
    if name not in OPTION_TYPES:
        raise ConfigValidationError(name, "no such option")
    return name


def _type_names(accepted: tuple[Any, ...]) -> str:
    return " or ".join("function" if t is callable else t.__name__ for t in accepted)


def validate_option(name: str, value: Any) -> Any:
    """Check ``value`` against the option table and normalize it.

    Returns:
        The value to store (pattern lists become tuples, mode is lower-cased,
        a handler of None becomes the echo handler)

    Raises:
        ConfigValidationError: If the option is unknown or the value has the wrong shape
    """
    name = canonical_option(name)
    accepted = OPTION_TYPES[name]
    if name == "handler" and value is None:
        return echo_handler

    ok = False
    for expected in accepted:
        if expected is callable:
            ok = callable(value)
        elif expected in (int, float) and isinstance(value, bool):
            ok = False
        else:
            ok = isinstance(value, expected)
        if ok:
            break
    if not ok:
        raise ConfigValidationError(
            name, f"expecting a {_type_names(accepted)}, got {type(value).__name__} {value!r}"
        )

    if name == "port" and value is not None and not 0 <= value <= MAX_PORT:
        raise ConfigValidationError(name, f"{value} is outside 0-{MAX_PORT}")
    if name == "backlog" and value < 0:
        raise ConfigValidationError(name, "must not be negative")
    if name == "timeout" and value <= 0:
        raise ConfigValidationError(name, "must be positive")
    if name == "protocol" and value.lower() != DEFAULT_PROTOCOL:
        raise ConfigValidationError(name, f"only {DEFAULT_PROTOCOL} is supported, got {value!r}")
    if name in ("allowed", "forbidden"):
        bad = [p for p in value if p is not None and not isinstance(p, str)]
        if bad:
            raise ConfigValidationError(name, f"patterns must be strings, got {bad!r}")
        return tuple(value)
    if name in ("mode", "protocol"):
        return value.lower()
    return value


@dataclass
class ServerConfig:
    """Validated server parameters.

    Attributes:
        port: Port to listen on, or the remote port in client mode
        bind_address: Local address to bind; the remote host in client mode
        backlog: Listen queue size
        protocol: Transport protocol, always "tcp"
        timeout: Socket timeout in seconds for every connection
        mode: One of forking, select (multiplex), client, threaded, inetd
        handler: Called with a ConnectionContext for each connection
        trigger: Client mode pacing function, fires once when unset
        allowed: Patterns of hosts allowed to connect
        forbidden: Patterns of hosts refused a connection
        debug: Emit debug diagnostics
        reverse_lookup: Resolve peer hostnames before the access check
        redirect_stdio: Rebind sys.stdin/sys.stdout to the connection in handlers
        encoding: Text encoding of the connection streams
    """

    port: int | None = None
    bind_address: str | None = None
    backlog: int = DEFAULT_BACKLOG
    protocol: str = DEFAULT_PROTOCOL
    timeout: float = DEFAULT_TIMEOUT
    mode: str = DEFAULT_MODE
    handler: Handler = echo_handler
    trigger: Trigger | None = None
    allowed: tuple[str, ...] = field(default_factory=tuple)
    forbidden: tuple[str, ...] = field(default_factory=tuple)
    debug: bool = False
    reverse_lookup: bool = True
    redirect_stdio: bool = True
    encoding: str = "utf-8"

    def __post_init__(self) -> None:
        for f in fields(self):
            setattr(self, f.name, validate_option(f.name, getattr(self, f.name)))

    def set(self, name: str, value: Any) -> bool:
        """Assign an option, keeping the previous value if it is rejected.

        Args:
            name: Option name or alias
            value: New value

        Returns:
            bool: True if the value was stored
        """
        try:
            field_name = canonical_option(name)
            setattr(self, field_name, validate_option(field_name, value))
        except ConfigValidationError as e:
            logger.warning(f"Rejected configuration value: {e}")
            return False
        return True

    def get(self, name: str) -> Any:
        return getattr(self, canonical_option(name))

    def update(self, **options: Any) -> list[str]:
        """Apply several options; returns the names that were rejected."""
        return [name for name, value in options.items() if not self.set(name, value)]

    @property
    def remote_host(self) -> str:
        """Host a client-mode worker connects to."""
        return self.bind_address or "localhost"

    @classmethod
    def from_options(cls, **options: Any) -> "ServerConfig":
        """Build a config from keyword options, aliases allowed.

        Invalid options are logged and skipped, like ``set()``.
        """
        config = cls()
        config.update(**options)
        return config

    @classmethod
    def from_toml(cls, path: str | Path) -> "ServerConfig":
        """Load a config from the ``[server]`` table of a TOML file.

        ``handler``/``callback`` and ``trigger`` are given as
        ``"package.module:attribute"`` strings.

        Raises:
            ConfigValidationError: If the file has no [server] table or a value is invalid
        """
        with Path(path).open("rb") as f:
            data = tomllib.load(f)
        options = data.get("server")
        if not isinstance(options, dict):
            raise ConfigValidationError("server", f"{path} has no [server] table")

        resolved: dict[str, Any] = {}
        for name, value in options.items():
            field_name = canonical_option(name)
            if field_name in ("handler", "trigger") and isinstance(value, str):
                value = import_object(value)
            resolved[field_name] = value
        return cls(**resolved)


def import_object(path: str) -> Any:
    """Import ``"package.module:attribute"`` and return the attribute.

    Raises:
        ConfigValidationError: If the module or attribute cannot be found
    """
    module_name, _, attribute = path.partition(":")
    if not module_name or not attribute:
        raise ConfigValidationError(path, "expected 'module:attribute'")
    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise ConfigValidationError(path, f"cannot import {module_name}: {e}") from e
    try:
        target: Any = module
        for part in attribute.split("."):
            target = getattr(target, part)
    except AttributeError as e:
        raise ConfigValidationError(path, f"{module_name} has no attribute {attribute}") from e
    return target
