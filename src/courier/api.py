import typing

from .body import encode_body
from .connection import Connection
from .connectors import select_connector
from .options import OptionLayers, OptionsType, is_uri, normalize


class Requester:
    """Callable entry point that starts requests. Calling it normalizes
    the options, picks a connector and encodes the body, then hands back
    the Connection without doing any I/O.

    'defaults()' returns a new Requester whose options are layered
    under the ones given per call, it can be chained.
    """

    def __init__(self, layers: typing.Optional[OptionLayers] = None):
        self._layers = layers or OptionLayers()

    def __call__(
        self,
        uri_or_options: typing.Any = None,
        options: typing.Optional[OptionsType] = None,
        **kwargs: typing.Any,
    ) -> Connection:
        if is_uri(uri_or_options):
            layers = self._layers.push(options, kwargs, {"uri": uri_or_options})
        else:
            layers = self._layers.push(options, uri_or_options, kwargs)

        request_options = normalize(layers.resolve())
        conn = select_connector(request_options)(request_options)
        encode_body(request_options, conn)
        return conn

    def defaults(
        self, options: typing.Optional[OptionsType] = None, **kwargs: typing.Any
    ) -> "Requester":
        return Requester(self._layers.push(options, kwargs))

    def get(self, *args: typing.Any, **kwargs: typing.Any) -> Connection:
        return self.defaults(method="GET")(*args, **kwargs)

    def post(self, *args: typing.Any, **kwargs: typing.Any) -> Connection:
        return self.defaults(method="POST")(*args, **kwargs)

    def put(self, *args: typing.Any, **kwargs: typing.Any) -> Connection:
        return self.defaults(method="PUT")(*args, **kwargs)

    def delete(self, *args: typing.Any, **kwargs: typing.Any) -> Connection:
        return self.defaults(method="DELETE")(*args, **kwargs)

    def head(self, *args: typing.Any, **kwargs: typing.Any) -> Connection:
        return self.defaults(method="HEAD")(*args, **kwargs)

    def options(self, *args: typing.Any, **kwargs: typing.Any) -> Connection:
        return self.defaults(method="OPTIONS")(*args, **kwargs)


request = Requester()
