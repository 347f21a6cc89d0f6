"""
Exception types raised inside the bridge.

Most of them never reach an API caller: components catch them at their
boundary and report a typed outcome instead. StoreOpenError is the one that
is allowed to escape, and it stops startup.
"""


class BridgeError(Exception):
    """Base class for bridge errors."""


class StoreOpenError(BridgeError):
    """The database could not be opened or its schema could not be created."""


class ClientNotReadyError(BridgeError):
    """The messaging session is not ready to send."""


class SendFailedError(BridgeError):
    """The provider rejected or failed an outbound send."""
