import binascii
import io
import json
import mimetypes
import os
import typing

import filetype

from . import utils
from .models import Headers, HeadersType
from .utils import INT_TO_URLENC, encode_nested_params, sync_or_async, to_bytes

if typing.TYPE_CHECKING:
    from .connection import Connection
    from .options import RequestOptions

JSONType = typing.Union[
    typing.Mapping[typing.Any, typing.Any],
    typing.Sequence[typing.Any],
    int,
    bool,
    str,
    float,
    None,
]


class RequestData:
    """A request body the connection can stream into the wire.
    Subclasses wrap whatever was passed in via 'body', 'form' or
    'form_data'. A 'content_length()' of 'None' means the length
    isn't known up front and 'Transfer-Encoding: chunked' is used.
    """

    content_type: typing.Optional[str] = None

    def content_length(self) -> typing.Optional[int]:
        raise NotImplementedError()

    def data_chunks(self) -> typing.AsyncIterator[bytes]:
        raise NotImplementedError()


class NoData(RequestData):
    def content_length(self) -> typing.Optional[int]:
        return 0

    async def data_chunks(self) -> typing.AsyncIterator[bytes]:
        return
        yield


class Bytes(RequestData):
    """Class representing the simplest data-type, just bytes."""

    content_type = "application/octet-stream"

    def __init__(self, data: typing.Union[str, bytes]):
        self._data = to_bytes(data)

    def content_length(self) -> typing.Optional[int]:
        return len(self._data)

    async def data_chunks(self) -> typing.AsyncIterator[bytes]:
        if self._data:
            yield self._data


class Stream(RequestData):
    """A byte stream of unknown length. Either a file-like object
    with 'read()' (a plain or trio async file) or an async iterable.
    Streams can only be sent once.
    """

    def __init__(self, stream: typing.Any):
        self._stream = stream

    @property
    def name(self) -> typing.Optional[str]:
        name = getattr(self._stream, "name", None)
        return os.path.basename(str(name)) if name else None

    def content_length(self) -> typing.Optional[int]:
        return None

    async def data_chunks(self) -> typing.AsyncIterator[bytes]:
        if hasattr(self._stream, "read"):
            while True:
                data = await sync_or_async(self._stream.read, utils.CHUNK_SIZE)
                if not data:
                    break
                yield to_bytes(data)
        else:
            async for data in self._stream:
                if data:
                    yield to_bytes(data)

    def peek(self, nbytes: int) -> bytes:
        """Reads up to 'nbytes' from the start of a seekable binary
        file and puts the file pointer back where it was.
        """
        fp = self._stream
        if isinstance(fp, io.TextIOBase) or not hasattr(fp, "seek"):
            return b""
        try:
            begin = fp.tell()
            data = fp.read(nbytes)
            fp.seek(begin, 0)
        except (OSError, TypeError, ValueError):
            return b""
        return data if isinstance(data, bytes) else b""


def compact_json_dumps(obj: JSONType) -> str:
    """Function that doesn't add extra whitespace when encoding JSON"""
    return json.dumps(obj, separators=(",", ":"))


class JSON(RequestData):
    content_type = "application/json; charset=utf-8"

    def __init__(
        self,
        json: JSONType,
        json_dumps: typing.Callable[[JSONType], str] = compact_json_dumps,
    ):
        self._data = json_dumps(json).encode("utf-8")

    def content_length(self) -> typing.Optional[int]:
        return len(self._data)

    async def data_chunks(self) -> typing.AsyncIterator[bytes]:
        yield self._data


class URLEncodedForm(RequestData):
    """Implements application/x-www-form-urlencoded as a RequestData object.
    Nested values use the same bracket notation as 'qs'.
    """

    content_type = "application/x-www-form-urlencoded"

    def __init__(self, form: typing.Mapping[str, typing.Any]):
        self._data = encode_nested_params(form, INT_TO_URLENC).encode("ascii")

    def content_length(self) -> typing.Optional[int]:
        return len(self._data)

    async def data_chunks(self) -> typing.AsyncIterator[bytes]:
        if self._data:
            yield self._data


def guess_content_type(filename: typing.Optional[str], head: bytes = b"") -> str:
    """Guesses by the filename, then by the first bytes of the
    content and finally gives up with 'application/octet-stream'.
    """
    content_type = None
    if filename:
        content_type, _ = mimetypes.guess_type(filename, strict=False)
    if content_type is None and head:
        content_type = filetype.guess_mime(head)
    return content_type or "application/octet-stream"


class MultipartFormField(RequestData):
    """Essentially a wrapper for a 'RequestData' object with
    a name, filename, and headers.
    """

    def __init__(
        self,
        name: str,
        *,
        data: RequestData,
        filename: typing.Optional[str] = None,
        headers: typing.Optional[HeadersType] = None,
    ):
        self.name = name
        self.data = data
        self.filename = filename
        self.headers = headers if isinstance(headers, Headers) else Headers(headers)

        disposition = f'form-data; name="{_quote(name)}"'
        if filename is not None:
            disposition += f'; filename="{_quote(filename)}"'
        self.headers.setdefault("content-disposition", disposition)
        self.headers.setdefault("content-type", self._guess_content_type())

    @property  # type: ignore
    def content_type(self) -> typing.Optional[str]:  # type: ignore
        return self.headers.get_one("content-type")

    def content_length(self) -> typing.Optional[int]:
        data_length = self.data.content_length()
        if data_length is None:
            return None
        return len(self.render_headers()) + data_length

    def data_chunks(self) -> typing.AsyncIterator[bytes]:
        return self.data.data_chunks()

    def render_headers(self) -> bytes:
        """Renders the headers for the Multipart field."""
        lines = []

        # Render these headers before any others as they're defined in the standard.
        priority_headers = ("content-disposition", "content-type")
        for name in priority_headers:
            value = self.headers.get_one(name)
            if value is not None:
                lines.append(b"%b: %b" % (name.encode(), value.encode()))

        for name, value in self.headers.items():
            name = name.lower()
            if value is not None and name not in priority_headers:
                lines.append(b"%b: %b" % (name.encode(), value.encode()))

        lines.append(b"\r\n")
        return b"\r\n".join(lines)

    def _guess_content_type(self) -> str:
        filename = self.filename
        head = b""
        if isinstance(self.data, Bytes):
            head = self.data._data[:261]
        elif isinstance(self.data, Stream):
            filename = self.data.name or filename
            head = self.data.peek(261)
        return guess_content_type(filename, head)


def _quote(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"')


class MultipartForm(RequestData):
    """Implements multipart/form-data as a RequestData object"""

    def __init__(self, fields: typing.Optional[typing.List[MultipartFormField]] = None):
        self._fields: typing.List[MultipartFormField] = fields or []
        self.boundary = binascii.hexlify(os.urandom(16)).decode()

    @classmethod
    def from_mapping(
        cls, form_data: typing.Mapping[str, typing.Any]
    ) -> "MultipartForm":
        """One field per entry, each named and filed under its key."""
        form = cls()
        for key, value in form_data.items():
            form.add_field(str(key), value, filename=str(key))
        return form

    def add_field(
        self,
        name: str,
        data: typing.Any,
        *,
        filename: typing.Optional[str] = None,
        headers: typing.Optional[HeadersType] = None,
    ) -> MultipartFormField:
        """Adds a field to the multipart form"""
        if not isinstance(data, RequestData):
            data = to_request_data(data)
        field = MultipartFormField(
            name=name, data=data, filename=filename, headers=headers
        )
        self._fields.append(field)
        return field

    def content_length(self) -> typing.Optional[int]:
        """Needs to check all fields to see that they have a defined
        length (non-iterable). If any field doesn't have a defined length
        then we must use the chunked transfer-encoding for the entire message.
        """
        field_size = 0
        for field in self._fields:
            field_length = field.content_length()
            if field_length is None:
                return None
            # '--boundary\r\n' before and '\r\n' after each field.
            field_size += len(self.boundary) + 6 + field_length
        return field_size + len(self.boundary) + 6

    async def data_chunks(self) -> typing.AsyncIterator[bytes]:
        boundary_bytes = self.boundary.encode()
        for field in self._fields:
            yield b"--%b\r\n%b" % (boundary_bytes, field.render_headers())
            async for chunk in field.data_chunks():
                yield chunk
            yield b"\r\n"
        yield b"--%b--\r\n" % boundary_bytes

    @property  # type: ignore
    def content_type(self) -> str:  # type: ignore
        return f"multipart/form-data; boundary={self.boundary}"


def is_stream(value: typing.Any) -> bool:
    return hasattr(value, "read") or hasattr(value, "__aiter__")


def to_request_data(value: typing.Any) -> RequestData:
    if isinstance(value, RequestData):
        return value
    if isinstance(value, (str, bytes, bytearray)):
        return Bytes(bytes(value) if isinstance(value, bytearray) else value)
    if is_stream(value):
        return Stream(value)
    return Bytes(utils._param_to_str(value))


def encode_body(options: "RequestOptions", conn: "Connection") -> None:
    """Picks exactly one way to encode the request body and writes it
    into 'conn'. If no payload applies nothing is written and the
    connection is left open for the caller to write to.
    """
    body = options.body

    if options.method.upper() == "GET":
        conn.end()
    elif isinstance(body, (str, bytes, bytearray)):
        payload = to_bytes(bytes(body) if isinstance(body, bytearray) else body)
        conn.set_header("Content-Length", str(len(payload)))
        conn.end(payload)
    elif body is not None and is_stream(body):
        conn.pipe(Stream(body))
    elif body is not None:
        _end_with(conn, JSON(body))
    elif options.form is not None:
        _end_with(conn, URLEncodedForm(options.form))
    elif options.form_data is not None:
        form = MultipartForm.from_mapping(options.form_data)
        conn.set_header("Content-Type", form.content_type)
        conn.pipe(form)


def _end_with(conn: "Connection", data: typing.Union[JSON, URLEncodedForm]) -> None:
    conn.set_header("Content-Type", typing.cast(str, data.content_type))
    conn.set_header("Content-Length", str(data.content_length()))
    conn.pipe(data)
