import base64
import typing

from .models import Request
from .utils import to_bytes


class BasicAuth:
    """Implements RFC 7617 - Basic Authentication. The same
    credentials can be applied as 'Authorization' for a target
    or as 'Proxy-Authorization' for a proxy.
    """

    def __init__(
        self,
        username: typing.Union[str, bytes],
        password: typing.Union[str, bytes],
        *,
        header: str = "authorization",
        encoding: str = "latin-1",
    ):
        username = to_bytes(username, encoding=encoding)
        password = to_bytes(password, encoding=encoding)

        self.header = header
        credentials = base64.b64encode(b"%b:%b" % (username, password)).decode()
        self.value = f"Basic {credentials}"

    def __call__(self, request: Request) -> Request:
        request.headers.setdefault(self.header, self.value)
        return request
