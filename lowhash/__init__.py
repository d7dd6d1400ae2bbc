"""Brute-force search for the smallest SHA-256 digest over a fixed message layout."""

from .digest import less_than, worst_digest
from .host import Orchestrator, hash_rate
from .search import Candidate, CLSearch, DispatchError, NumpySearch, open_backend
from .sha256 import compress, compress_reference

__version__ = "0.1.0"

__all__ = [
    "CLSearch",
    "Candidate",
    "DispatchError",
    "NumpySearch",
    "Orchestrator",
    "compress",
    "compress_reference",
    "hash_rate",
    "less_than",
    "open_backend",
    "worst_digest",
]
