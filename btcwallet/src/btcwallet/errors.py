"""
Wallet error taxonomy.

Transport-level errors (ConnectionError, ClosedError, TimeoutError, RpcError)
live in btccore; everything raised by the client and signers derives from
WalletError.
"""

from __future__ import annotations


class WalletError(Exception):
    pass


class ExhaustedRetriesError(WalletError):
    """The persistence policy gave up reconnecting. Carries the last underlying error."""

    def __init__(self, last_error: BaseException | None = None):
        message = "Electrum reconnection retries exhausted"
        if last_error is not None:
            message = f"{message}: {last_error}"
        super().__init__(message)
        self.last_error = last_error


class BroadcastRejectedError(WalletError):
    """The server refused a transaction. ``reason`` is the server's text, verbatim."""

    def __init__(self, reason: str, code: int | None = None):
        super().__init__(reason)
        self.reason = reason
        self.code = code


class UnsupportedOperationError(WalletError):
    pass


class UnsupportedStandardError(WalletError):
    pass


class UnsupportedBipError(WalletError):
    pass


class DisposedSignerError(WalletError):
    pass


class DeviceNotReadyError(WalletError):
    pass


class DeviceActionError(WalletError):
    pass


class DeviceActionStoppedError(DeviceActionError):
    pass
