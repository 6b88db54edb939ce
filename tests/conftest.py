"""Test fixtures for camtagger."""

import asyncio
import json
import re
import socket
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass, field
from http import HTTPStatus
from typing import Any
from urllib.parse import parse_qsl

import pytest
import uvicorn
from pydantic import BaseModel
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import Response
from starlette.routing import Route

from camtagger.backend_types import Discovery, SigningDiscovery
from camtagger.client import CamliClient, blob_ref

SEARCH_PATH = "/my-search/camli/search/query"
DESCRIBE_PATH = "/my-search/camli/search/describe"
SIGN_PATH = "/sighelper/camli/sig/sign"
UPLOAD_PATH = "/bs/camli/upload"
SIGNER = "sha224-0000000000000000000000000000000000000000000000000000abcd"

# =============================================================================
# Default test data factories
# =============================================================================


def make_discovery(signing: bool = True) -> Discovery:
    """Create a test Discovery document."""
    return Discovery(
        blob_root="/bs/",
        search_root="/my-search/",
        signing=SigningDiscovery(public_key_blob_ref=SIGNER, sign_handler=SIGN_PATH) if signing else None,
    )


def make_search_result(*blobs: str) -> dict[str, Any]:
    if not blobs:
        return {}
    return {"blobs": [{"blob": blob} for blob in blobs]}


def make_describe(permanode: str, attr: dict[str, Any] | None = None) -> dict[str, Any]:
    return {
        "meta": {
            permanode: {
                "blobRef": permanode,
                "camliType": "permanode",
                "permanode": {"attr": attr or {}},
            }
        }
    }


# =============================================================================
# FakeResponse - HTTP-like response configuration
# =============================================================================


@dataclass
class FakeResponse:
    """HTTP-like response for fake server.

    Attributes:
        http_status: HTTP status code
        body: Response body (BaseModel, list, dict, str, bytes or None)
        headers: Response headers as tuple of (name, value) pairs
    """

    http_status: HTTPStatus = HTTPStatus.OK
    body: BaseModel | list | dict | str | bytes | None = None
    headers: tuple[tuple[str, str], ...] = ()


@dataclass
class FakeRequest:
    """A request received by the fake server."""

    method: str
    path: str
    params: dict[str, str]
    headers: dict[str, str]
    body: bytes

    def json(self) -> Any:
        return json.loads(self.body)

    def form(self) -> dict[str, str]:
        return dict(parse_qsl(self.body.decode()))


FakeHandler = Callable[[FakeRequest], FakeResponse]

# Type alias for fake responses dictionary
FakeResponses = dict[str, FakeResponse | FakeHandler]


def with_discovery(responses: FakeResponses, signing: bool = True) -> FakeResponses:
    """Prepend the discovery document every client session starts with."""
    return {"GET /": FakeResponse(body=make_discovery(signing=signing)), **responses}


# =============================================================================
# RouteMatcher - Match URL patterns with path parameters
# =============================================================================


class RouteMatcher:
    """Match request URIs against fake_responses patterns.

    Converts patterns like "GET /bs/{blob}" to regex that matches
    "GET /bs/sha224-abc".
    """

    _PARAM_PATTERN = re.compile(r"\{([^}]+)\}")

    def __init__(self, responses: FakeResponses):
        self._responses = responses
        self._compiled: list[tuple[re.Pattern[str], str]] = []
        for pattern in self._responses:
            regex = re.compile(f"^{re.escape(pattern.split()[0])} {self._path_to_regex(pattern)}$")
            self._compiled.append((regex, pattern))

    def _path_to_regex(self, pattern: str) -> str:
        parts = pattern.split(" ", 1)
        path = parts[1] if len(parts) > 1 else parts[0]
        result = ""
        last_end = 0
        for match in self._PARAM_PATTERN.finditer(path):
            result += re.escape(path[last_end : match.start()])
            result += "([^/]+)"
            last_end = match.end()
        result += re.escape(path[last_end:])
        return result

    def match(self, method: str, path: str) -> FakeResponse | FakeHandler | None:
        uri = f"{method} {path}"

        if uri in self._responses:
            return self._responses[uri]

        for regex, pattern in self._compiled:
            if regex.match(uri):
                return self._responses[pattern]

        return None


# =============================================================================
# FakePerkeep - stateful server model for end-to-end runs
# =============================================================================


@dataclass
class FakePerkeep:
    """In-memory Perkeep: files, permanodes, attributes and the claims applied to them."""

    files: dict[tuple[str, int], list[str]] = field(default_factory=dict)
    permanodes: dict[str, list[str]] = field(default_factory=dict)
    attrs: dict[str, dict[str, list[str]]] = field(default_factory=dict)
    failing_values: set[str] = field(default_factory=set)
    claims: list[dict[str, Any]] = field(default_factory=list)
    _pending: dict[str, dict[str, Any]] = field(default_factory=dict)

    def add_file(self, name: str, size: int, blob: str, *permanodes: str, tags: tuple[str, ...] = ()) -> None:
        self.files.setdefault((name, size), []).append(blob)
        self.permanodes.setdefault(blob, []).extend(permanodes)
        for permanode in permanodes:
            attrs = self.attrs.setdefault(permanode, {"camliContent": [blob]})
            if tags:
                attrs["tag"] = list(tags)

    def search(self, request: FakeRequest) -> FakeResponse:
        constraint = request.json()["constraint"]
        if "file" in constraint:
            file = constraint["file"]
            size = file["fileSize"].get("min", 0)
            return FakeResponse(body=make_search_result(*self.files.get((file["fileName"]["equals"], size), [])))
        permanode = constraint["permanode"]
        assert permanode["attr"] == "camliContent"
        return FakeResponse(body=make_search_result(*self.permanodes.get(permanode["value"], [])))

    def describe(self, request: FakeRequest) -> FakeResponse:
        permanode = request.params["blobref"]
        if permanode not in self.attrs:
            return FakeResponse(body={"meta": {}})
        return FakeResponse(body=make_describe(permanode, self.attrs[permanode]))

    def sign(self, request: FakeRequest) -> FakeResponse:
        claim = json.loads(request.form()["json"])
        if claim["value"] in self.failing_values:
            return FakeResponse(http_status=HTTPStatus.INTERNAL_SERVER_ERROR, body={"error": "signing failed"})
        signed = request.form()["json"][:-1] + ',"camliSig":"fake-signature"}'
        self._pending[blob_ref(signed.encode())] = claim
        return FakeResponse(body=signed)

    def upload(self, request: FakeRequest) -> FakeResponse:
        match = re.search(rb'name="([^"]+)"', request.body)
        assert match is not None
        ref = match.group(1).decode()
        claim = self._pending.pop(ref)
        self.claims.append(claim)

        values = self.attrs.setdefault(claim["permaNode"], {}).setdefault(claim["attribute"], [])
        if claim["claimType"] == "add-attribute":
            if claim["value"] not in values:
                values.append(claim["value"])
        elif claim["value"] in values:
            values.remove(claim["value"])
        return FakeResponse(body={"received": [{"blobRef": ref, "size": 1}]})

    def responses(self) -> FakeResponses:
        return with_discovery(
            {
                f"POST {SEARCH_PATH}": self.search,
                f"GET {DESCRIBE_PATH}": self.describe,
                f"POST {SIGN_PATH}": self.sign,
                f"POST {UPLOAD_PATH}": self.upload,
            }
        )


# =============================================================================
# Fixtures - Real HTTP fake server
# =============================================================================


@pytest.fixture
def fake_server_socket() -> socket.socket:
    """Create a bound socket for the fake server."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
    sock.bind(("127.0.0.1", 0))
    sock.listen(128)
    return sock


@pytest.fixture
def fake_server_port(fake_server_socket: socket.socket) -> int:
    """Port the fake server is bound to."""
    _, port = fake_server_socket.getsockname()
    return port


@pytest.fixture
def fake_server_url(fake_server_port: int) -> str:
    """URL for the fake server."""
    return f"http://127.0.0.1:{fake_server_port}"


def _convert_pydantic(obj: Any) -> Any:
    """Recursively convert pydantic models to dicts."""
    if isinstance(obj, BaseModel):
        return obj.model_dump(by_alias=True)
    if isinstance(obj, dict):
        return {k: _convert_pydantic(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_convert_pydantic(item) for item in obj]
    return obj


def _serialize_body(body: Any) -> str | bytes:
    """Serialize response body to JSON string."""
    if body is None:
        return ""
    if isinstance(body, BaseModel):
        return body.model_dump_json(by_alias=True)
    if isinstance(body, (list, dict)):
        return json.dumps(_convert_pydantic(body))
    if isinstance(body, bytes):
        return body
    return str(body)


@pytest.fixture
def fake_requests() -> list[FakeRequest]:
    """Requests received by the fake server, in arrival order."""
    return []


@pytest.fixture
async def http_fake_server(
    fake_responses: FakeResponses,
    fake_requests: list[FakeRequest],
    fake_server_socket: socket.socket,
) -> AsyncIterator[None]:
    """Real HTTP server returning configured fake responses.

    Uses pre-bound socket so server is ready immediately after task starts.
    """
    matcher = RouteMatcher(fake_responses)

    async def handle_request(request: Request) -> Response:
        """Handle incoming requests and return configured fake responses."""
        fake_request = FakeRequest(
            method=request.method,
            path=request.url.path,
            params=dict(request.query_params),
            headers=dict(request.headers),
            body=await request.body(),
        )
        fake_requests.append(fake_request)

        fake_response = matcher.match(fake_request.method, fake_request.path)
        if fake_response is None:
            return Response(
                content=json.dumps({"error": f"No fake response for {fake_request.method} {fake_request.path}"}),
                status_code=404,
                media_type="application/json",
            )
        if callable(fake_response):
            fake_response = fake_response(fake_request)

        content = _serialize_body(fake_response.body)
        headers = dict(fake_response.headers)

        if "content-type" not in {k.lower() for k in headers}:
            if isinstance(fake_response.body, (str, bytes)) and fake_response.body[:1] not in ("{", b"{"):
                media_type = "text/plain"
            else:
                media_type = "application/json"
            headers["Content-Type"] = media_type

        return Response(
            content=content,
            status_code=fake_response.http_status.value,
            headers=headers,
        )

    app = Starlette(
        routes=[
            Route(
                "/{path:path}",
                endpoint=handle_request,
                methods=["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD"],
            ),
        ],
    )

    config = uvicorn.Config(app, log_level="error")
    server = uvicorn.Server(config)
    server_task = asyncio.create_task(server.serve(sockets=[fake_server_socket]))

    yield

    server.should_exit = True
    await server_task


@pytest.fixture
async def camli_client(
    http_fake_server: None,
    fake_server_url: str,
) -> AsyncIterator[CamliClient]:
    """Real CamliClient pointing to the fake HTTP server."""
    async with CamliClient(base_url=fake_server_url) as client:
        yield client


@pytest.fixture
def fake_responses() -> FakeResponses:
    """Default fake responses: only the discovery document."""
    return with_discovery({})
