import secrets
import urllib.parse

from fastapi.templating import Jinja2Templates

templates = Jinja2Templates(directory="assets/templates")


def build_redirect_url(url: str, params: dict[str, str]) -> str:
    """
    Append `params` to the query string of `url`, keeping the parameters already present in it
    """
    separator = "&" if urllib.parse.urlparse(url).query else "?"
    return url + separator + urllib.parse.urlencode(params)


def get_random_string(length: int = 5) -> str:
    return "".join(
        secrets.choice("abcdefghijklmnopqrstuvwxyz0123456789") for _ in range(length)
    )
