from datetime import datetime

from fastapi import Form
from pydantic import BaseModel


class AccessTokenClaims(BaseModel):
    """
    Claims of a signed access token.

    sub: the user id
    cid: the client id
    jti: the identifier of the persisted record of the token
    """

    sub: str
    cid: str
    jti: str
    iss: str | None = None
    iat: int
    exp: int


class IssuedTokens(BaseModel):
    access_token: str
    refresh_token: str
    claims: AccessTokenClaims
    refresh_token_expires_at: datetime
    # Where the user should be redirected after the exchange
    landing_page: str


class ValidatedToken(BaseModel):
    """
    Result of the validation of the credentials of a request.

    `rotated_access_token` is set when the access token was expired and a new one was issued using the refresh token.
    """

    claims: AccessTokenClaims
    rotated_access_token: str | None = None


class AuthorizeDecision(BaseModel):
    client_id: str
    redirect_uri: str
    state: str
    decision: str

    @classmethod
    def as_form(
        cls,
        client_id: str = Form(...),
        redirect_uri: str = Form(...),
        state: str = Form(...),
        decision: str = Form(...),
    ):
        return cls(
            client_id=client_id,
            redirect_uri=redirect_uri,
            state=state,
            decision=decision,
        )


class IntrospectTokenResponse(BaseModel):
    active: bool
    sub: str | None = None
    client_id: str | None = None
    exp: int | None = None
