"""Remote persistence backend (auth + tables)."""

from clevercard.remote.contract import RemoteBackend
from clevercard.remote.rest_backend import RestBackend

__all__ = ["RemoteBackend", "RestBackend"]
