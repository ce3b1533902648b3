"""Resource read and write endpoints.

Reads go to ``GET /<resource_type>`` with the key's canonical parameters as
the query string; writes are described by a :class:`Mutation`.
"""

from __future__ import annotations

from typing import Any

from pydatasync._api._common import parse_data, unwrap_envelope
from pydatasync._transport import Transport
from pydatasync.models.resources import Mutation, ResourcePage, ResourcePayload
from pydatasync.store.keys import ResourceKey


def resource_endpoint(resource_type: str) -> str:
    return "/" + resource_type.strip("/")


async def fetch_resource(transport: Transport, key: ResourceKey, access_token: str) -> ResourcePage:
    """Fetch the page of records identified by *key*."""
    endpoint = resource_endpoint(key.resource_type)
    response = await transport.request(
        "GET",
        endpoint,
        params=key.query_params(),
        access_token=access_token,
    )
    payload = parse_data(endpoint=endpoint, body=response, model=ResourcePayload)
    return ResourcePage.from_payload(payload)


async def send_mutation(transport: Transport, mutation: Mutation, access_token: str) -> Any:
    """Perform *mutation* and return the response ``data`` verbatim."""
    endpoint = "/" + mutation.path.lstrip("/")
    response = await transport.request(
        mutation.method,
        endpoint,
        json_body=mutation.body,
        access_token=access_token,
    )
    if response is None:
        return None
    return unwrap_envelope(endpoint=endpoint, body=response)
