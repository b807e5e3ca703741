from __future__ import annotations


class AppError(Exception):
    """Base application error."""

    def __init__(self, detail: str = "") -> None:
        self.detail = detail
        super().__init__(detail)


class ChatConnectionError(AppError):
    """Broker session could not be established or was lost.

    Absorbed by the reconnection policy; the UI only sees a "disconnected"
    indicator.
    """


class ConnectTimeout(ChatConnectionError):
    pass


class TransportFailure(ChatConnectionError):
    pass


class AuthError(AppError):
    """Fatal for the session. Never retried."""


class MissingCredential(AuthError):
    pass


class CredentialRejected(AuthError):
    pass


class SendError(AppError):
    pass


class PublishFailed(SendError):
    pass


class NotConnected(SendError):
    pass


class FetchError(AppError):
    pass


class HistoryUnavailable(FetchError):
    pass


class CountUnavailable(FetchError):
    pass


class ReadReceiptError(AppError):
    """Failure of a fire-and-forget side effect (read/delivered receipts).

    Logged by the background runner and never propagated to callers.
    """


class ValidationError(AppError):
    pass
