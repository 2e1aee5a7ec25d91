"""Generic TCP server: forking, select-based and client-mode connection dispatch."""

import pathlib
import sys

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib


def get_version() -> str:
    """Read version from pyproject.toml."""
    current_dir = pathlib.Path(__file__).parent
    for parent in [current_dir] + list(current_dir.parents):
        pyproject_path = parent / "pyproject.toml"
        if pyproject_path.exists():
            with pyproject_path.open("rb") as f:
                pyproject_data = tomllib.load(f)
            if pyproject_data.get("project", {}).get("name") == "netserver":
                return pyproject_data["project"]["version"]

    # Installed without the source tree
    return "0.0.0"


__version__ = get_version()

from netserver.core.config import ServerConfig  # noqa: E402
from netserver.core.server import NetServer, run  # noqa: E402

__all__ = ["NetServer", "ServerConfig", "__version__", "run"]
