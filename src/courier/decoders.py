"""Decoders for the 'Content-Encoding' values we advertise"""
import functools
import types
import typing
import zlib

brotli: typing.Optional[types.ModuleType]
zstandard: typing.Optional[types.ModuleType]
try:
    import brotli
except ImportError:
    brotli = None

try:
    import zstandard
except ImportError:
    zstandard = None


class Decoder:
    def decompress(self, data: bytes) -> bytes:
        raise NotImplementedError()

    def flush(self) -> bytes:
        raise NotImplementedError()


class IdentityDecoder(Decoder):
    def decompress(self, data: bytes) -> bytes:
        return data

    def flush(self) -> bytes:
        return b""


class DeflateDecoder(Decoder):
    """Servers send both zlib-wrapped and raw deflate streams
    for 'deflate' so the first chunk decides which one we're reading.
    """

    def __init__(self) -> None:
        self._obj = zlib.decompressobj()
        self._pending: typing.Optional[bytearray] = bytearray()

    def decompress(self, data: bytes) -> bytes:
        if not data:
            return data
        if self._pending is None:
            return self._obj.decompress(data)

        self._pending += data
        try:
            decompressed = self._obj.decompress(data)
        except zlib.error:
            self._obj = zlib.decompressobj(-zlib.MAX_WBITS)
            data, self._pending = bytes(self._pending), None
            return self._obj.decompress(data)
        if decompressed:
            self._pending = None
        return decompressed

    def flush(self) -> bytes:
        return self._obj.flush()


class GzipDecoder(Decoder):
    """Handles multi-member gzip bodies, trailing garbage after
    the first member is ignored like other clients do.
    """

    def __init__(self) -> None:
        self._obj = zlib.decompressobj(16 + zlib.MAX_WBITS)
        self._first_member = True
        self._swallow = False

    def decompress(self, data: bytes) -> bytes:
        ret = bytearray()
        while data and not self._swallow:
            try:
                ret += self._obj.decompress(data)
            except zlib.error:
                self._swallow = True
                if self._first_member:
                    raise
                break
            data = self._obj.unused_data
            if data:
                self._first_member = False
                self._obj = zlib.decompressobj(16 + zlib.MAX_WBITS)
        return bytes(ret)

    def flush(self) -> bytes:
        return self._obj.flush()


if brotli is not None:

    class BrotliDecoder(Decoder):
        def __init__(self) -> None:
            self._obj = brotli.Decompressor()

        def decompress(self, data: bytes) -> bytes:
            # 'Brotli' names it process(), 'brotlipy' names it decompress()
            if hasattr(self._obj, "process"):
                return self._obj.process(data)
            return self._obj.decompress(data)

        def flush(self) -> bytes:
            if hasattr(self._obj, "flush"):
                return self._obj.flush()
            return b""


if zstandard is not None:

    class ZstdDecoder(Decoder):
        def __init__(self) -> None:
            self._obj = zstandard.ZstdDecompressor().decompressobj()

        def decompress(self, data: bytes) -> bytes:
            return self._obj.decompress(data)

        def flush(self) -> bytes:
            return self._obj.flush() or b""


class MultiDecoder(Decoder):
    """Encodings are listed in the order they were applied
    so they're undone in reverse.
    """

    def __init__(self, content_encoding: str) -> None:
        self._decoders = [
            get_content_decoder(m) for m in reversed(content_encoding.split(","))
        ]

    def decompress(self, data: bytes) -> bytes:
        for d in self._decoders:
            data = d.decompress(data)
        return data

    def flush(self) -> bytes:
        data = b""
        for d in self._decoders:
            data = (d.decompress(data) if data else b"") + d.flush()
        return data


def _available_decoders() -> typing.Dict[str, typing.Type[Decoder]]:
    decoders: typing.Dict[str, typing.Type[Decoder]] = {
        "gzip": GzipDecoder,
        "x-gzip": GzipDecoder,
        "deflate": DeflateDecoder,
        "x-deflate": DeflateDecoder,
    }
    if brotli is not None:
        decoders["br"] = BrotliDecoder
    if zstandard is not None:
        decoders["zstd"] = ZstdDecoder
    return decoders


DECODERS = _available_decoders()


def get_content_decoder(content_encoding: str) -> Decoder:
    content_encoding = content_encoding.strip().lower()
    if "," in content_encoding:
        return MultiDecoder(content_encoding)
    # Unknown encodings are passed through untouched.
    return DECODERS.get(content_encoding, IdentityDecoder)()


@functools.lru_cache(1)
def accept_encoding() -> str:
    """Returns the value of 'Accept-Encoding' that the client should use.
    This value varies depending on what packages are installed.
    """
    return ", ".join(x for x in DECODERS if not x.startswith("x-"))
