"""
A collection of Pydantic validators
See https://docs.pydantic.dev/latest/concepts/validators/#reuse-validators
"""


def password_validator(password: str) -> str:
    """
    Check the password strength, validity and remove trailing spaces.
    This function is intended to be used as a Pydantic validator
    """
    password = password.strip()
    if len(password) < 8:
        raise ValueError("The password must be at least 8 characters long")  # noqa: TRY003
    return password


def email_normalizer(email: str) -> str:
    """
    Normalize the email address by lowercasing it. We also remove trailing spaces.
    This function is intended to be used as a Pydantic validator
    """
    return email.lower().strip()


def username_validator(username: str) -> str:
    """
    Remove trailing spaces and refuse usernames that could be mistaken for an email address.
    This function is intended to be used as a Pydantic validator
    """
    username = username.strip()
    if not username:
        raise ValueError("The username can not be empty")  # noqa: TRY003
    if "@" in username:
        raise ValueError("The username can not contain '@'")  # noqa: TRY003
    return username
