from functools import cached_property
from typing import Any, ClassVar

import jwt
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.serialization import load_pem_private_key
from pydantic import computed_field, model_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)

from authgate.types.exceptions import (
    DotenvInvalidVariableError,
    DotenvMissingVariableError,
    InvalidRSAKeyInDotenvError,
)


class Settings(BaseSettings):
    """
    Settings for AuthGate
    The class is based on a yaml configuration file: `config.yaml`.

    All undefined variables will be populated from:
    1. An environment variable
    2. A yaml config.yaml file
    3. The dotenv .env file

    See [Pydantic Settings documentation](https://docs.pydantic.dev/latest/concepts/pydantic_settings/#dotenv-env-support) for more information.
    See [FastAPI settings](https://fastapi.tiangolo.com/advanced/settings/) article for best practices with settings.

    To access these settings, the `get_settings` dependency should be used.
    """

    # By default, the settings are loaded from the `config.yaml` or `.env` file but this behaviour can be overridden using
    # `_env_file` and `_yaml_file` parameter during instantiation
    # Ex: `Settings(_env_file=".env.dev", _yaml_file="config.dev.yaml")`
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        yaml_file="config.yaml",
        case_sensitive=False,
        extra="ignore",
    )

    # Pydantic does not support overriding the yaml file path using a `_yaml_file` parameter
    # as it does for the `_env_file` parameter.
    # See https://github.com/pydantic/pydantic-settings/issues/259
    # We thus override the `_yaml_file` manually during the class instantiation
    _yaml_file: ClassVar[str]

    def __init__(self, _yaml_file, _env_file, **kwargs):
        Settings._yaml_file = _yaml_file
        super().__init__(_env_file=_env_file, **kwargs)

    # The order of these sources define their precedence:
    # parameters passed as initialization arguments will have
    # precedence over environment variables, yaml file and dotenv
    # See https://docs.pydantic.dev/latest/concepts/pydantic_settings/#important-notes
    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,
            env_settings,
            YamlConfigSettingsSource(settings_cls, yaml_file=cls._yaml_file),
            dotenv_settings,
        )

    ########################
    # Signing and sessions #
    ########################

    # RSA_PRIVATE_PEM_STRING should be a string containing the PEM certificate of a private RSA key.
    # It is used to sign every access token, at issuance and at rotation
    # In the pem certificates newlines can be replaced by `\n`
    RSA_PRIVATE_PEM_STRING: bytes
    # SESSION_SECRET_KEY should contain a random string with enough entropy (at least 32 bytes long)
    # It signs the session cookie holding the login CSRF token and the authenticated user
    SESSION_SECRET_KEY: str

    # Host or url of the instance of AuthGate, used as the `iss` claim of access tokens
    # NOTE: A trailing / is required
    CLIENT_URL: str

    # Cookies are only sent over https when True. Should only be disabled for local development and tests
    COOKIE_SECURE: bool = True

    ###################
    # Token lifetimes #
    ###################

    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60
    REFRESH_TOKEN_EXPIRE_MINUTES: int = 60 * 24 * 30  # 30 days
    AUTHORIZATION_CODE_EXPIRE_MINUTES: int = 10
    STATE_COOKIE_MAX_AGE_SECONDS: int = 60 * 60 * 24

    # A just created authorization code may not be visible yet when the callback is called (replica lag)
    # Redemption is retried a bounded number of times, only when the code is not found
    AUTHORIZATION_CODE_LOOKUP_ATTEMPTS: int = 3
    AUTHORIZATION_CODE_LOOKUP_DELAY_MS: int = 100

    # If True, an access token is only accepted if its persisted record still exists.
    # Otherwise, a revoked access token stays valid until its natural expiration
    CHECK_ACCESS_TOKEN_RECORD: bool = False

    # Client created for each new user during registration
    DEFAULT_CLIENT_REDIRECT_URI: str = "/callback"
    DEFAULT_CLIENT_LANDING_PAGE: str | None = "/dashboard"

    #####################
    # AuthGate settings #
    #####################

    # By default, only production's records are logged
    LOG_DEBUG_MESSAGES: bool = False

    # Origins for the CORS middleware. `["http://localhost"]` can be used for development.
    # See https://fastapi.tiangolo.com/tutorial/cors/
    # It should begin with 'http://' or 'https:// and should never end with a '/'
    CORS_ORIGINS: list[str] = []

    ##########################
    # Database configuration #
    ##########################
    # If set, the application use a SQLite database instead of PostgreSQL, for testing or development purposes
    SQLITE_DB: str | None = None
    POSTGRES_HOST: str = ""
    POSTGRES_USER: str = ""
    POSTGRES_PASSWORD: str = ""
    POSTGRES_DB: str = ""
    DATABASE_DEBUG: bool = False  # If True, the database will log all queries

    ######################################
    # Automatically generated parameters #
    ######################################

    # These properties are computed from other fields, which are not available before the configuration files are parsed.
    # Their values should not change, we use `@cached_property` so they are computed only once

    @computed_field  # type: ignore[prop-decorator] # Current issue with mypy, see https://docs.pydantic.dev/2.0/usage/computed_fields/ and https://github.com/python/mypy/issues/1362
    @cached_property
    def RSA_PRIVATE_KEY(cls) -> rsa.RSAPrivateKey:
        # https://cryptography.io/en/latest/hazmat/primitives/asymmetric/serialization/#module-cryptography.hazmat.primitives.serialization
        private_key = load_pem_private_key(cls.RSA_PRIVATE_PEM_STRING, password=None)
        if not isinstance(private_key, rsa.RSAPrivateKey):
            raise InvalidRSAKeyInDotenvError(private_key.__class__.__name__)
        return private_key

    @computed_field  # type: ignore[prop-decorator]
    @cached_property
    def RSA_PUBLIC_KEY(cls) -> rsa.RSAPublicKey:
        return cls.RSA_PRIVATE_KEY.public_key()

    @computed_field  # type: ignore[prop-decorator]
    @cached_property
    def RSA_PUBLIC_JWK(cls) -> dict[str, list[dict[str, Any]]]:
        # See https://github.com/jpadilla/pyjwt/issues/880
        algo = jwt.get_algorithm_by_name("RS256")
        jwk = algo.to_jwk(cls.RSA_PUBLIC_KEY, as_dict=True)
        jwk.update(
            {
                "use": "sig",
                "alg": "RS256",
                "kid": "RSA-JWK-1",  # Should match the kid in the token header
            },
        )
        return {"keys": [jwk]}

    @computed_field  # type: ignore[prop-decorator]
    @cached_property
    def OIDC_ISSUER(cls) -> str:
        return cls.CLIENT_URL[:-1]

    #######################################
    #          Fields validation          #
    #######################################

    @model_validator(mode="after")
    def check_client_url(self) -> "Settings":
        if not self.CLIENT_URL[-1] == "/":
            raise DotenvInvalidVariableError(  # noqa: TRY003
                "CLIENT_URL must contains a trailing slash",
            )
        return self

    @model_validator(mode="after")
    def check_database_settings(self) -> "Settings":
        """
        All fields are optional, but the configuration should set SQLITE_DB or a Postgres database
        """
        if not (
            self.SQLITE_DB
            or (
                self.POSTGRES_HOST
                and self.POSTGRES_USER
                and self.POSTGRES_PASSWORD
                and self.POSTGRES_DB
            )
        ):
            raise DotenvMissingVariableError(  # noqa: TRY003
                "Either SQLITE_DB or POSTGRES_HOST, POSTGRES_USER, POSTGRES_PASSWORD and POSTGRES_DB",
            )

        return self

    @model_validator(mode="after")
    def check_secrets(self) -> "Settings":
        if not self.RSA_PRIVATE_PEM_STRING:
            raise DotenvMissingVariableError(
                "RSA_PRIVATE_PEM_STRING",
            )
        if not self.SESSION_SECRET_KEY:
            raise DotenvMissingVariableError(
                "SESSION_SECRET_KEY",
            )

        return self

    @model_validator(mode="after")
    def check_token_lifetimes(self) -> "Settings":
        """
        An access token must always expire before the refresh token issued with it
        """
        if self.ACCESS_TOKEN_EXPIRE_MINUTES >= self.REFRESH_TOKEN_EXPIRE_MINUTES:
            raise DotenvInvalidVariableError(  # noqa: TRY003
                "ACCESS_TOKEN_EXPIRE_MINUTES must be lower than REFRESH_TOKEN_EXPIRE_MINUTES",
            )
        if self.AUTHORIZATION_CODE_LOOKUP_ATTEMPTS < 1:
            raise DotenvInvalidVariableError(  # noqa: TRY003
                "AUTHORIZATION_CODE_LOOKUP_ATTEMPTS must be at least 1",
            )

        return self

    @model_validator(mode="after")
    def init_cached_property(self) -> "Settings":
        """
        Cached property are not computed during the instantiation of the class, but when they are accessed for the first time.
        By calling them in this validator, we force their initialization during the instantiation of the class.
        This allow them to raise error on startup if they are not correctly configured instead of creating an error on runtime.
        """
        self.RSA_PRIVATE_KEY  # noqa: B018
        self.RSA_PUBLIC_KEY  # noqa: B018
        self.RSA_PUBLIC_JWK  # noqa: B018
        self.OIDC_ISSUER  # noqa: B018

        return self


def construct_prod_settings() -> Settings:
    """
    Return the production settings
    """
    return Settings(_env_file=".env", _yaml_file="config.yaml")
