from __future__ import annotations

import aiohttp
import pytest

from pydatasync.errors import ErrorKind, classify, classify_status, describe
from pydatasync.exceptions import (
    ApiError,
    AuthenticationError,
    ResourceLoadError,
    ResponseSchemaError,
    TransportError,
)
from pydatasync.store.keys import ResourceKey


@pytest.mark.parametrize(
    ("status", "kind"),
    [
        (401, ErrorKind.UNAUTHENTICATED),
        (403, ErrorKind.FORBIDDEN),
        (404, ErrorKind.NOT_FOUND),
        (429, ErrorKind.RATE_LIMITED),
        (500, ErrorKind.SERVER_ERROR),
        (503, ErrorKind.SERVER_ERROR),
        (599, ErrorKind.SERVER_ERROR),
        (400, ErrorKind.UNKNOWN),
        (409, ErrorKind.UNKNOWN),
        (None, ErrorKind.NETWORK_UNREACHABLE),
    ],
)
def test_transport_error_classified_by_status(status: int | None, kind: ErrorKind) -> None:
    assert classify(TransportError("boom", status_code=status)) is kind
    assert classify_status(status) is kind


def test_authentication_and_authorization_failures_are_distinct() -> None:
    assert classify(TransportError("", status_code=401)) is not classify(TransportError("", status_code=403))


@pytest.mark.parametrize(
    "error",
    [
        TimeoutError(),
        ConnectionRefusedError(),
        aiohttp.ClientConnectionError("refused"),
    ],
)
def test_no_response_is_network_unreachable(error: BaseException) -> None:
    assert classify(error) is ErrorKind.NETWORK_UNREACHABLE


def test_schema_violation_is_server_error() -> None:
    assert classify(ResponseSchemaError("bad shape", endpoint="/orders")) is ErrorKind.SERVER_ERROR


def test_unrecognised_failures_are_unknown() -> None:
    assert classify(ValueError("nope")) is ErrorKind.UNKNOWN
    assert classify(ApiError("success=false")) is ErrorKind.UNKNOWN


def test_classified_errors_keep_their_kind() -> None:
    key = ResourceKey.build("orders")
    assert classify(ResourceLoadError("x", kind=ErrorKind.FORBIDDEN, key=key)) is ErrorKind.FORBIDDEN
    assert classify(AuthenticationError("x", kind=ErrorKind.RATE_LIMITED)) is ErrorKind.RATE_LIMITED


def test_every_kind_has_a_non_technical_message() -> None:
    for kind in ErrorKind:
        message = describe(kind)
        assert message
        assert "Traceback" not in message
        assert "HTTP" not in message
