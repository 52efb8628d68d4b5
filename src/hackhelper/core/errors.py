"""Error taxonomy for run initiation, monitoring and reconciliation."""

from __future__ import annotations
import errno

import httpx

_GONE_ERRNOS = {errno.ECONNRESET, errno.ECONNREFUSED, errno.ECONNABORTED, errno.EPIPE}
_GONE_TRANSPORT_ERRORS = (
    httpx.ConnectError,
    httpx.RemoteProtocolError,
    httpx.ReadError,
    httpx.WriteError,
)


class HackHelperError(Exception):
    """Base class for hack-helper errors."""


class InitiationError(HackHelperError):
    """The runtime did not hand back a usable run. Fatal for the whole command."""


class ChannelError(HackHelperError):
    """A transient failure local to one monitoring channel."""

    def __init__(self, channel: str, message: str, connection_gone: bool = False):
        super().__init__(f"[{channel}] {message}")
        self.channel = channel
        self.connection_gone = connection_gone


class ReconciliationMiss(HackHelperError):
    """A reconciliation strategy found nothing to materialize."""


class ConnectionClosed(HackHelperError):
    """The stream was closed by the remote side; treated as a completion signal."""


def is_connection_gone(exc: BaseException | None) -> bool:
    """True when the error means the remote side went away (reset, refused, aborted).

    Walks the ``__cause__``/``__context__`` chain so wrapped transport errors
    are classified the same as bare ones.
    """
    seen: set[int] = set()
    while exc is not None and id(exc) not in seen:
        seen.add(id(exc))
        if isinstance(exc, ChannelError) and exc.connection_gone:
            return True
        if isinstance(exc, _GONE_TRANSPORT_ERRORS):
            return True
        if isinstance(exc, OSError) and exc.errno in _GONE_ERRNOS:
            return True
        if isinstance(exc, (ConnectionResetError, ConnectionRefusedError, ConnectionAbortedError)):
            return True
        exc = exc.__cause__ or exc.__context__
    return False
