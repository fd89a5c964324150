"""jwtlab: issue, persist and inspect short-lived HS256 bearer tokens."""
from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("jwtlab")
except PackageNotFoundError:  # pragma: no cover
    __version__ = "0.0.0"
