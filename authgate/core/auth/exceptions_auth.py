"""
Errors raised by the authorization flow.

Each error carries a public OAuth style `error` code and a generic description, safe to return to the client,
and an internal message which is only logged.
"""

from fastapi import status


class AuthFlowError(Exception):
    status_code: int = status.HTTP_400_BAD_REQUEST
    error: str = "invalid_request"
    error_description: str = "Invalid request"
    # Soft failures are not returned as errors: the user is sent back to the login page
    force_login: bool = False

    def __init__(self, detail: str | None = None):
        super().__init__(detail or self.error_description)
        self.detail = detail or self.error_description


class InvalidRequestError(AuthFlowError):
    pass


class StateMismatchError(AuthFlowError):
    error = "invalid_state"
    error_description = "Invalid state"


class UnauthorizedClientError(AuthFlowError):
    error = "unauthorized_client"
    error_description = "Unauthorized client"


class CodeNotFoundError(AuthFlowError):
    error = "invalid_grant"
    error_description = "Invalid authorization code"


class CodeExpiredError(AuthFlowError):
    error = "invalid_grant"
    error_description = "Invalid authorization code"


class TokenInvalidSignatureError(AuthFlowError):
    status_code = status.HTTP_401_UNAUTHORIZED
    error = "invalid_token"
    error_description = "Invalid token"


class TokenExpiredNoRefreshError(AuthFlowError):
    error = "invalid_token"
    error_description = "Token has expired"


class RefreshInvalidOrExpiredError(AuthFlowError):
    error = "invalid_token"
    error_description = "Authentication required"
    force_login = True


class LoginRequiredError(AuthFlowError):
    error = "login_required"
    error_description = "Authentication required"
    force_login = True


class StorageFailureError(AuthFlowError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    error = "server_error"
    error_description = "Internal server error"
