"""Errors raised by vector stores."""

import httpx


class StoreError(Exception):
    """Base class for vector store failures."""


class InvalidConfiguration(StoreError, ValueError):
    """Options or settings the store does not accept."""


class RequestFailed(StoreError, httpx.HTTPStatusError):
    """The server answered a store request with a failure.

    Subclasses ``httpx.HTTPStatusError`` so callers catching the transport's
    own error keep working.
    """

    def __init__(self, message: str, *, request: httpx.Request, response: httpx.Response):
        httpx.HTTPStatusError.__init__(self, message, request=request, response=response)

    @classmethod
    def from_response(cls, response: httpx.Response) -> "RequestFailed":
        url = str(response.request.url)
        return cls(
            f'HTTP {response.status_code} returned for "{url}".',
            request=response.request,
            response=response,
        )

    @property
    def status_code(self) -> int:
        return self.response.status_code

    @property
    def url(self) -> str:
        return str(self.request.url)
