"""
ContentProof Binding Proxy

FastAPI service in front of the registry API's binding endpoints. Every
request is authorized with ``BindingAuthorizer`` (all proofs checked up
front) before anything is forwarded upstream with the service API key.

The caller identity arrives in the ``X-Caller-Id`` header, placed there by
the session layer in front of this service.
"""

import json
import logging
from typing import Any, Dict, List, Optional, Tuple

import requests
from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool
from starlette.datastructures import UploadFile

from .binding import BindingAuthorizer, BindingRequest, LinkedProviderLookup
from .config import ProvenanceConfig
from .errors import ProvenanceError
from .logging_config import audit_log, configure_logging, get_request_id, set_request_id
from .models import BindManyRequest, BindRequest
from .rate_limit import RateLimiter

logger = logging.getLogger(__name__)

_STATUS_BY_KIND = {
    "validation": 400,
    "authorization": 403,
    "config": 500,
}


class UpstreamError(Exception):
    """The registry API could not be reached."""


class BindingForwarder:
    """Forwards authorized binding requests to the registry API."""

    def __init__(
        self,
        api_url: str,
        api_key: Optional[str] = None,
        timeout: float = 30.0,
        session: Optional[requests.Session] = None,
    ):
        self.api_url = api_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.session = session or requests.Session()

    def _headers(self) -> Dict[str, str]:
        return {"x-api-key": self.api_key} if self.api_key else {}

    def post_json(self, path: str, body: Dict[str, Any]) -> requests.Response:
        try:
            return self.session.post(
                self.api_url + path, json=body, headers=self._headers(), timeout=self.timeout
            )
        except requests.exceptions.RequestException as e:
            raise UpstreamError(str(e)) from e

    def post_multipart(
        self,
        path: str,
        fields: List[Tuple[str, str]],
        files: List[Tuple[str, Tuple[str, bytes, str]]],
    ) -> requests.Response:
        try:
            return self.session.post(
                self.api_url + path,
                data=fields,
                files=files,
                headers=self._headers(),
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            raise UpstreamError(str(e)) from e


def _relay(response: requests.Response) -> JSONResponse:
    """Pass the upstream result through; errors keep their status code."""
    if not response.ok:
        return JSONResponse({"error": response.text}, status_code=response.status_code)
    try:
        return JSONResponse(response.json())
    except ValueError:
        return JSONResponse(
            {"kind": "upstream", "message": "Upstream returned a non-JSON body"}, status_code=502
        )


def _form_bindings(raw: Optional[str], platform: Optional[str], platform_id: Optional[str]) -> List[BindingRequest]:
    """Bindings of a one-shot form: a JSON ``bindings`` array, else ``platform``/``platformId``."""
    bindings: List[BindingRequest] = []
    if raw:
        try:
            items = json.loads(raw)
        except json.JSONDecodeError:
            raise HTTPException(400, "bindings must be a JSON array")
        if not isinstance(items, list):
            raise HTTPException(400, "bindings must be a JSON array")
        bindings = [
            BindingRequest(str(b["platform"]), str(b["platformId"]))
            for b in items
            if isinstance(b, dict) and b.get("platform") and b.get("platformId")
        ]
    if not bindings and platform and platform_id:
        bindings = [BindingRequest(platform, platform_id)]
    return bindings


def create_app(
    config: ProvenanceConfig,
    has_linked_provider: LinkedProviderLookup,
    forwarder: Optional[BindingForwarder] = None,
    limiter: Optional[RateLimiter] = None,
    log_level: Optional[str] = "INFO",
) -> FastAPI:
    """
    Build the proxy application.

    Args:
        config: Supplies ``apiUrl``/``apiKey`` and the per-caller rate limit
        has_linked_provider: ``(caller, provider) -> bool`` identity lookup
        forwarder: Upstream client (built from config when omitted)
        limiter: Rate limiter (``binding_rpm`` per caller when omitted)
        log_level: Configure structured logging at this level; None leaves
            logging untouched
    """
    if log_level:
        configure_logging(level=log_level)
    if forwarder is None:
        config.require("apiUrl")
        forwarder = BindingForwarder(config.api_url, config.api_key, config.network_timeout_seconds)

    authorizer = BindingAuthorizer(has_linked_provider)
    limiter = limiter or RateLimiter(config.binding_rpm)

    app = FastAPI(title="ContentProof Binding Proxy")

    @app.middleware("http")
    async def request_context(request: Request, call_next):
        set_request_id(request.headers.get("x-request-id"))
        response = await call_next(request)
        response.headers["X-Request-Id"] = get_request_id()
        return response

    @app.exception_handler(ProvenanceError)
    async def provenance_error_handler(request: Request, exc: ProvenanceError):
        return JSONResponse(exc.to_dict(), status_code=_STATUS_BY_KIND.get(exc.kind, 502))

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        errors = [
            {"loc": [str(part) for part in err.get("loc", ())], "msg": err.get("msg", "")}
            for err in exc.errors()
        ]
        return JSONResponse(
            {"kind": "validation", "message": "Malformed request", "errors": errors},
            status_code=400,
        )

    @app.exception_handler(UpstreamError)
    async def upstream_error_handler(request: Request, exc: UpstreamError):
        logger.error("Upstream request failed: %s", exc)
        return JSONResponse({"kind": "upstream", "message": str(exc)}, status_code=502)

    def caller_identity(request: Request, x_caller_id: Optional[str] = Header(None)) -> str:
        if not x_caller_id:
            raise HTTPException(401, "Unauthorized")
        if not limiter.allow(x_caller_id):
            audit_log.rate_limit_exceeded(x_caller_id, request.url.path)
            raise HTTPException(429, "RATE_LIMIT")
        return x_caller_id

    @app.post("/api/app/bind")
    def bind(req: BindRequest, caller: str = Depends(caller_identity)):
        authorizer.require(caller, [BindingRequest(req.platform, req.platformId, req.contentHash)])
        return _relay(forwarder.post_json("/api/bind", req.model_dump()))

    @app.post("/api/app/bind-many")
    def bind_many(req: BindManyRequest, caller: str = Depends(caller_identity)):
        authorizer.require(caller, [BindingRequest(b.platform, b.platformId, req.contentHash)
                                    for b in req.bindings])
        return _relay(forwarder.post_json("/api/bind-many", req.model_dump()))

    @app.post("/api/app/one-shot")
    async def one_shot(request: Request, caller: str = Depends(caller_identity)):
        form = await request.form()
        bindings = _form_bindings(form.get("bindings"), form.get("platform"), form.get("platformId"))
        if bindings:
            authorizer.require(caller, bindings)

        fields: List[Tuple[str, str]] = []
        files: List[Tuple[str, Tuple[str, bytes, str]]] = []
        for key, value in form.multi_items():
            if isinstance(value, UploadFile):
                content = await value.read()
                files.append((key, (value.filename or "upload", content,
                                    value.content_type or "application/octet-stream")))
            else:
                fields.append((key, value))
        if not files:
            raise HTTPException(400, "file required")

        response = await run_in_threadpool(forwarder.post_multipart, "/api/one-shot", fields, files)
        return _relay(response)

    return app
