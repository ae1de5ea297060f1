# cdadmin/infra/fc_client.py
"""
Function Compute HTTP transport (aiohttp).

Implements the two calls the dispatch layer needs:

- ``invoke_function``: POST .../services/{svc}/functions/{fn}/invocations
- ``put``: PUT on an arbitrary API path (stateful async
  invocation control)

Requests are signed with the FC scheme::

    Authorization: FC <access_key_id>:<base64(hmac-sha1(secret, string_to_sign))>

    string_to_sign = METHOD \\n content-md5 \\n content-type \\n date \\n
                     canonical x-fc-* headers + canonical resource

Non-2xx responses raise ``FcError`` carrying the HTTP status and the
``ErrorCode`` from the JSON body.
"""
from __future__ import annotations

import base64
import hashlib
import hmac
import json
from email.utils import formatdate
from urllib.parse import quote

import aiohttp

from cdadmin.config import settings
from cdadmin.core.ports import InvokeResponse
from cdadmin.infra.http_client import get_fc_session
from cdadmin.infra.logging_config import get_logger
from cdadmin.infra.metrics import Timer

logger = get_logger(__name__)


class FcError(Exception):
    """Function Compute API call failed."""

    def __init__(
        self,
        status: int,
        code: str | None = None,
        message: str = "",
        request_id: str | None = None,
    ):
        self.status = status
        self.code = code
        self.message = message
        self.request_id = request_id
        super().__init__(f"FC error {status} {code or ''}: {message}".strip())


def content_md5(body: bytes) -> str:
    return hashlib.md5(body).hexdigest()


def canonical_fc_headers(headers: dict[str, str]) -> str:
    """``x-fc-*`` headers, lower-cased and sorted, one ``key:value\\n`` each."""
    fc_headers = {
        k.lower(): str(v).strip()
        for k, v in headers.items()
        if k.lower().startswith("x-fc-")
    }
    return "".join(f"{k}:{fc_headers[k]}\n" for k in sorted(fc_headers))


def compute_fc_signature(
    secret: str,
    method: str,
    resource: str,
    headers: dict[str, str],
) -> str:
    """Compute the base64 HMAC-SHA1 signature for a Function Compute request."""
    lower = {k.lower(): v for k, v in headers.items()}
    string_to_sign = "\n".join([
        method.upper(),
        lower.get("content-md5", ""),
        lower.get("content-type", ""),
        lower.get("date", ""),
        canonical_fc_headers(headers) + resource,
    ])
    digest = hmac.new(secret.encode(), string_to_sign.encode(), hashlib.sha1).digest()
    return base64.b64encode(digest).decode()


class FcClient:
    """Signed Function Compute client bound to one account / region."""

    def __init__(
        self,
        access_key_id: str | None = None,
        access_key_secret: str | None = None,
        endpoint: str | None = None,
        api_version: str | None = None,
        security_token: str | None = None,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        self.access_key_id = access_key_id or settings.fc_access_key_id or ""
        self.access_key_secret = access_key_secret or settings.fc_access_key_secret or ""
        self.endpoint = (endpoint or settings.fc_endpoint_url).rstrip("/")
        self.api_version = api_version or settings.fc_api_version
        self.security_token = security_token or settings.fc_security_token
        self._session = session

    @property
    def session(self) -> aiohttp.ClientSession:
        return self._session or get_fc_session()

    @property
    def api_prefix(self) -> str:
        """Path prefix that precedes every resource (``/2016-08-15``)."""
        return f"/{self.api_version}"

    def build_headers(
        self,
        method: str,
        path: str,
        body: bytes = b"",
        extra: dict[str, str] | None = None,
        date: str | None = None,
    ) -> dict[str, str]:
        headers = {
            "accept": "application/json",
            "date": date or formatdate(usegmt=True),
            "content-type": "application/octet-stream" if body else "application/json",
            "content-length": str(len(body)),
        }
        if body:
            headers["content-md5"] = content_md5(body)
        if self.security_token:
            headers["x-fc-security-token"] = self.security_token
        headers.update(extra or {})

        signature = compute_fc_signature(
            self.access_key_secret, method, self.api_prefix + path, headers,
        )
        headers["authorization"] = f"FC {self.access_key_id}:{signature}"
        return headers

    async def request(
        self,
        method: str,
        path: str,
        body: bytes = b"",
        headers: dict[str, str] | None = None,
    ) -> InvokeResponse:
        signed = self.build_headers(method, path, body, headers)
        url = self.endpoint + self.api_prefix + quote(path)

        with Timer("fc_request_seconds", method=method):
            async with self.session.request(method, url, data=body or None, headers=signed) as resp:
                raw = await resp.read()
                resp_headers = {k.lower(): v for k, v in resp.headers.items()}

                if resp.status >= 300:
                    code, message = _parse_error(raw)
                    logger.warning(
                        f"FC {method} {path} failed: status={resp.status} code={code}",
                        extra={"request_id": resp_headers.get("x-fc-request-id")},
                    )
                    raise FcError(
                        resp.status, code, message, request_id=resp_headers.get("x-fc-request-id"),
                    )

        return InvokeResponse(status=resp.status, headers=resp_headers, body=_parse_body(raw))

    async def invoke_function(
        self,
        service_name: str,
        function_name: str,
        body: str,
        headers: dict[str, str],
    ) -> InvokeResponse:
        path = f"/services/{service_name}/functions/{function_name}/invocations"
        return await self.request("POST", path, body.encode("utf-8"), headers)

    async def put(self, path: str) -> InvokeResponse:
        return await self.request("PUT", path)


def _parse_error(raw: bytes) -> tuple[str | None, str]:
    try:
        data = json.loads(raw or b"{}")
    except ValueError:
        return None, raw.decode("utf-8", errors="replace")
    if not isinstance(data, dict):
        return None, str(data)
    return data.get("ErrorCode"), data.get("ErrorMessage", "")


def _parse_body(raw: bytes):
    if not raw:
        return None
    try:
        return json.loads(raw)
    except ValueError:
        return raw.decode("utf-8", errors="replace")
