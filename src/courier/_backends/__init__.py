import sniffio

from .base import AsyncBackend, AsyncSocket, is_readable, wrap_exceptions
from .trio import TrioBackend, TrioSocket

__all__ = [
    "AsyncBackend",
    "AsyncSocket",
    "TrioBackend",
    "TrioSocket",
    "get_backend",
    "is_readable",
    "wrap_exceptions",
]


def get_backend() -> AsyncBackend:
    """Gets the backend for the event loop that's currently running.
    Only trio is supported.
    """
    try:
        async_lib = sniffio.current_async_library()
    except sniffio.AsyncLibraryNotFoundError:
        raise RuntimeError("courier must be used from within 'trio.run()'") from None
    if async_lib != "trio":
        raise RuntimeError(f"unsupported async library '{async_lib}', use trio")
    return TrioBackend()
