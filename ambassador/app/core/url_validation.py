"""Link validation shared by request schemas and report rules."""
from typing import Annotated, Optional

from pydantic import AfterValidator, HttpUrl, TypeAdapter, ValidationError

_http_url = TypeAdapter(HttpUrl)


def is_http_url(value: Optional[str]) -> bool:
    """True for an absolute http(s) URL with a host."""
    if not value or not isinstance(value, str):
        return False
    try:
        _http_url.validate_python(value.strip())
    except ValidationError:
        return False
    return True


def check_http_url(value: str) -> str:
    """Validate and strip, keeping the link exactly as the user sent it."""
    value = value.strip()
    if not is_http_url(value):
        raise ValueError("must be a valid URL")
    return value


# str field that must hold an http(s) link; HttpUrl would normalise the text
HttpUrlStr = Annotated[str, AfterValidator(check_http_url)]
