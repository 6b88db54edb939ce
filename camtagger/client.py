import hashlib
import importlib.metadata
import json
import logging
import platform
import sys
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from functools import cached_property
from types import MappingProxyType
from typing import Any

import httpx
from httpx import Headers
from pydantic import BaseModel, ValidationError
from typing_extensions import Self

from .backend_types import (
    Claim,
    ClaimType,
    DescribeResponse,
    Discovery,
    SearchQuery,
    SearchResult,
    UploadResponse,
)

log = logging.getLogger(__name__)

DISCOVERY_MEDIA_TYPE = "text/x-camli-configuration"


class CamliError(Exception):
    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class MalformedResponseError(CamliError):
    """The server answered, but not with the structure the operation expects."""


class Root(str, Enum):
    SERVER = "server"
    SEARCH = "search"
    SIGN = "sign"
    BLOB = "blob"


@dataclass(frozen=True)
class OperationDescriptor:
    method: str
    root: Root
    path: str
    response: type[BaseModel] | None


class Operation(Enum):
    DISCOVER = OperationDescriptor("GET", Root.SERVER, "", Discovery)
    SEARCH = OperationDescriptor("POST", Root.SEARCH, "camli/search/query", SearchResult)
    DESCRIBE = OperationDescriptor("GET", Root.SEARCH, "camli/search/describe", DescribeResponse)
    # the sign handler is advertised as a complete path and answers with raw signed JSON
    SIGN = OperationDescriptor("POST", Root.SIGN, "", None)
    UPLOAD = OperationDescriptor("POST", Root.BLOB, "camli/upload", UploadResponse)


class StructuredResponse:
    __slots__ = ("status", "headers", "body")

    status: int
    headers: Headers
    body: Any

    def __init__(self, status: int, headers: Headers, body: Any):
        self.status = status
        self.headers = headers
        self.body = body

    @classmethod
    def from_response(
        cls,
        response: httpx.Response,
        model: type[BaseModel],
        payload_limit: int = 4 * 1024 * 1024,
    ) -> "StructuredResponse":
        content_length = int(response.headers.get("Content-Length", "-1"))
        if content_length > payload_limit:
            raise CamliError(f"Response too large ({content_length} bytes)")
        text = response.text.strip()
        try:
            body = model.model_validate(json.loads(text))
        except ValidationError as e:
            raise MalformedResponseError(f"Unexpected {model.__name__} structure: {e}") from e
        except ValueError as e:
            raise MalformedResponseError(f"Invalid JSON in {model.__name__} response: {e}") from e
        return cls(response.status_code, response.headers, body)


def blob_ref(data: bytes) -> str:
    return f"sha224-{hashlib.sha224(data).hexdigest()}"


class CamliClient:
    PYTHON_VERSION = f"{'.'.join(map(str, sys.version_info[:3]))}"
    try:
        LIBRARY_VERSION = importlib.metadata.version("camtagger")
    except Exception:
        LIBRARY_VERSION = "unknown"

    OS_NAME = platform.system()
    OS_VERSION = platform.release()

    HEADERS = (
        (
            "User-Agent",
            " ".join(
                (
                    f"camtagger/{LIBRARY_VERSION}",
                    f"python/{PYTHON_VERSION}",
                    f"{OS_NAME}/{OS_VERSION}",
                )
            ),
        ),
    )

    def __init__(
        self,
        base_url: str,
        username: str = "",
        password: str = "",
        timeout: float | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.username = username
        self.password = password
        self.timeout = httpx.Timeout(timeout or None)
        self._discovery: Discovery | None = None

    @cached_property
    def headers(self) -> Mapping[str, str]:
        return MappingProxyType(dict(self.HEADERS))

    @cached_property
    def session(self) -> httpx.AsyncClient:
        auth = httpx.BasicAuth(self.username, self.password) if self.username else None
        return httpx.AsyncClient(headers=self.headers, timeout=self.timeout, auth=auth)

    async def close(self) -> None:
        if "session" in self.__dict__:
            await self.session.aclose()
            del self.__dict__["session"]

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.base_url!r})"

    async def discover(self) -> Discovery:
        """Fetch the server's discovery document once and reuse it for the rest of the run."""
        if self._discovery is None:
            response = await self._request(Operation.DISCOVER, headers={"Accept": DISCOVERY_MEDIA_TYPE})
            self._discovery = response.body
            log.debug(
                "Discovered %s: search=%s blobs=%s",
                self.base_url,
                self._discovery.search_root,
                self._discovery.blob_root,
            )
        return self._discovery

    async def _url(self, descriptor: OperationDescriptor) -> str:
        if descriptor.root == Root.SERVER:
            return f"{self.base_url}/{descriptor.path}"

        discovery = await self.discover()
        if descriptor.root == Root.SEARCH:
            root = discovery.search_root
        elif descriptor.root == Root.BLOB:
            root = discovery.blob_root
        elif descriptor.root == Root.SIGN:
            if discovery.signing is None:
                raise CamliError(f"Server {self.base_url} does not advertise a signing handler")
            root = discovery.signing.sign_handler
        else:
            raise ValueError(f"Unsupported root: {descriptor.root}")

        return f"{self.base_url}/{root.lstrip('/')}{descriptor.path}"

    async def _send(self, operation: Operation, **kwargs: Any) -> httpx.Response:
        """
        Perform the HTTP request behind an operation.
        Raises CamliError on error statuses (>= 400). Never retries.
        """
        descriptor = operation.value
        url = await self._url(descriptor)
        log.debug("%s %s", descriptor.method, url)
        response = await self.session.request(descriptor.method, url, **kwargs)
        if response.status_code >= 400:
            try:
                error_msg = json.loads(response.content).get("error", response.text)
            except Exception:
                error_msg = response.text

            log.debug("%s %s -> %d: %s", descriptor.method, url, response.status_code, error_msg)
            raise CamliError(error_msg or f"HTTP {response.status_code}", response.status_code)

        log.debug("%s %s -> %d", descriptor.method, url, response.status_code)
        return response

    async def _request(self, operation: Operation, **kwargs: Any) -> StructuredResponse:
        model = operation.value.response
        if model is None:
            raise ValueError(f"{operation.name} has no structured response")
        response = await self._send(operation, **kwargs)
        return StructuredResponse.from_response(response, model=model)

    async def search(self, query: SearchQuery) -> list[str]:
        response = await self._request(Operation.SEARCH, json=query.to_wire())
        result: SearchResult = response.body
        return result.blob_refs()

    async def find_content_blobs(self, name: str, size: int) -> list[str]:
        return await self.search(SearchQuery.content_blobs(name, size))

    async def find_permanodes(self, blob: str) -> list[str]:
        return await self.search(SearchQuery.permanodes_with_content(blob))

    async def describe(self, blobref: str) -> DescribeResponse:
        response = await self._request(Operation.DESCRIBE, params={"blobref": blobref})
        return response.body

    async def sign(self, claim: Claim) -> bytes:
        response = await self._send(Operation.SIGN, data={"json": claim.to_json()})
        signed = response.content.strip()
        if not signed.startswith(b"{"):
            raise MalformedResponseError("Sign handler did not return a JSON object")
        return signed

    async def upload(self, data: bytes) -> str:
        ref = blob_ref(data)
        response = await self._request(
            Operation.UPLOAD,
            files={ref: (ref, data, "application/octet-stream")},
        )
        body: UploadResponse = response.body
        if ref not in {received.blob_ref for received in body.received}:
            raise CamliError(f"Upload of {ref} was not acknowledged")
        log.debug("Uploaded %s (%d bytes)", ref, len(data))
        return ref

    async def set_attribute(self, claim_type: ClaimType, permanode: str, attribute: str, value: str) -> str:
        """Sign and upload an attribute claim on ``permanode``. Returns the claim's blobref."""
        discovery = await self.discover()
        if discovery.signing is None:
            raise CamliError(f"Server {self.base_url} does not advertise a signing handler")

        claim = Claim(
            camli_signer=discovery.signing.public_key_blob_ref,
            claim_type=claim_type,
            perma_node=permanode,
            attribute=attribute,
            value=value,
        )
        signed = await self.sign(claim)
        return await self.upload(signed)
