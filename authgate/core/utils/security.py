import hashlib
import secrets
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

import bcrypt
import jwt
from cryptography.hazmat.primitives.asymmetric import rsa

from authgate.core.utils.config import Settings

"""
In order to salt and hash password, we use the bcrypt hashing function (see https://en.wikipedia.org/wiki/Bcrypt).

A different salt will be added automatically for each password.
It is important to use enough rounds while accounting for the hash computation time. Default is 12. 13 allows for a 0.5 seconds computing delay.
"""

jws_algorithm = "RS256"
"""
The algorithm used to sign access tokens, both at issuance and at rotation
"""


@dataclass(frozen=True)
class TokenKeys:
    """
    Key material used to sign and verify access tokens.

    The object is built once at startup from the settings and passed to the token issuer and validator.
    """

    private_key: rsa.RSAPrivateKey
    public_key: rsa.RSAPublicKey
    issuer: str
    kid: str = "RSA-JWK-1"
    algorithm: str = jws_algorithm

    @classmethod
    def from_settings(cls, settings: Settings) -> "TokenKeys":
        return cls(
            private_key=settings.RSA_PRIVATE_KEY,
            public_key=settings.RSA_PUBLIC_KEY,
            issuer=settings.OIDC_ISSUER,
        )


def generate_token(nbytes=32) -> str:
    """
    Generate a `nbytes` bytes cryptographically strong random urlsafe token using the *secrets* library.

    By default, a 32 bytes token is generated.
    """
    return secrets.token_urlsafe(nbytes)


def hash_token(token: str) -> str:
    """
    Return the sha256 hexdigest of a token, allowing to store a value derived from it without storing the token itself
    """
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def get_password_hash(password: str) -> str:
    """
    Return a salted hash computed from password.
    Both the salt and the algorithm identifier are included in the hash.
    """
    hashed = bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=13))
    return hashed.decode("utf-8")


def verify_password(plain_password: str, hashed_password: str | None) -> bool:
    """
    Compare `plain_password` against its salted hash representation `hashed_password`.

    We generate a fake_hash for the case where hashed_password=None (ie the user does not exist) to simulate the delay a real verification would have taken.
    This is useful to limit timing attacks that could be used to guess valid emails or usernames.
    """
    if hashed_password is None:
        fake_hash = bcrypt.hashpw(
            generate_token(12).encode("utf-8"),
            bcrypt.gensalt(13),
        )
        bcrypt.checkpw(plain_password.encode("utf-8"), fake_hash)
        return False
    return bcrypt.checkpw(
        plain_password.encode("utf-8"),
        hashed_password.encode("utf-8"),
    )


def create_access_token(
    keys: TokenKeys,
    user_id: str,
    client_id: str,
    expires_delta: timedelta,
    jti: str | None = None,
) -> tuple[str, dict[str, Any]]:
    """
    Create a RS256 signed JWT bound to the user and the client.

    Return the encoded token and its claims. The `jti` claim identifies the persisted record of the token.
    """
    iat = datetime.now(UTC)
    claims: dict[str, Any] = {
        "sub": user_id,
        "cid": client_id,
        "jti": jti or str(uuid.uuid4()),
        "iss": keys.issuer,
        "iat": int(iat.timestamp()),
        "exp": int((iat + expires_delta).timestamp()),
    }
    token = jwt.encode(
        claims,
        keys.private_key,
        algorithm=keys.algorithm,
        # The kid allows to identify the key used to sign the JWT, and should be the same as the kid in the JWK Set
        headers={"kid": keys.kid},
    )
    return token, claims


def decode_access_token(
    keys: TokenKeys,
    token: str,
    verify_exp: bool = True,
) -> dict[str, Any]:
    """
    Verify the signature of an access token and return its claims.

    Raise `jwt.ExpiredSignatureError` if the token is expired and `verify_exp` is True,
    or an other `jwt.InvalidTokenError` if the token is malformed or its signature invalid.
    """
    return jwt.decode(
        token,
        keys.public_key,
        algorithms=[keys.algorithm],
        issuer=keys.issuer,
        options={
            "verify_exp": verify_exp,
            "require": ["sub", "cid", "jti", "iat", "exp"],
        },
    )
