"""Exceptions raised by the QShare core."""


class QShareError(Exception):
    pass


class PeerUnknownError(QShareError, LookupError):
    """Raised when a send targets a name the registry has never seen."""

    def __init__(self, name: str):
        super().__init__(f"Unknown peer: {name!r}")
        self.name = name


class PeerConnectionError(QShareError, ConnectionError):
    """Raised when the transfer port of a resolved peer is unreachable."""

    def __init__(self, address: str, port: int, reason: Exception | None = None):
        message = f"Could not connect to {address}:{port}"
        if reason is not None:
            message = f"{message}: {reason}"
        super().__init__(message)
        self.address = address
        self.port = port


class BindError(QShareError, OSError):
    """Raised when the receiver cannot listen on its transfer port."""

    def __init__(self, port: int, reason: Exception | None = None):
        message = f"Could not listen on TCP port {port}"
        if reason is not None:
            message = f"{message}: {reason}"
        super().__init__(message)
        self.port = port


class TransferError(QShareError):
    """Raised when the connection breaks while a batch is being sent."""
