"""httpx-based async client for the DNSimple API v2.

Only the calls the distribution monitor needs: whoami, create a zone record,
check its distribution, delete it. Methods return typed responses or raise
APIError / APIUnavailableError.
"""

from __future__ import annotations

import logging
from typing import Any, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from .. import __version__
from ..errors import APIError, APIUnavailableError
from .models import Whoami, ZoneDistribution, ZoneRecord, ZoneRecordAttributes

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)

PRODUCTION_URL = "https://api.dnsimple.com"
SANDBOX_URL = "https://api.sandbox.dnsimple.com"


class DNSimpleClient:
    """Async httpx client authenticated with a static API access token.

    The client holds one connection pool and is safe to share between
    concurrently running checks.
    """

    def __init__(
        self,
        token: str,
        base_url: str = PRODUCTION_URL,
        timeout: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._token = token
        self._http = httpx.AsyncClient(
            base_url=self._base_url,
            timeout=timeout,
            headers=self._headers,
            transport=transport,
        )

    @property
    def _headers(self) -> dict[str, str]:
        h = {
            "Accept": "application/json",
            "User-Agent": f"dnsimple-distribution/{__version__}",
        }
        if self._token:
            h["Authorization"] = f"Bearer {self._token}"
        return h

    async def close(self) -> None:
        await self._http.aclose()

    async def __aenter__(self) -> DNSimpleClient:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    async def _request(
        self,
        method: str,
        path: str,
        json_data: dict[str, Any] | None = None,
    ) -> httpx.Response:
        """Perform a request and map failures onto the error taxonomy."""
        try:
            resp = await self._http.request(method, path, json=json_data)
        except httpx.TimeoutException:
            raise APIUnavailableError(f"DNSimple request timed out: {method} {path}")
        except httpx.TransportError as e:
            raise APIUnavailableError(f"DNSimple is unreachable: {e}")
        except httpx.HTTPError as e:
            # Decoding errors, redirect loops and other request failures
            raise APIUnavailableError(f"DNSimple request failed: {type(e).__name__}: {e}") from e

        logger.debug("%s %s -> %d", method, path, resp.status_code)
        if resp.status_code >= 400:
            detail = resp.text
            try:
                detail = resp.json().get("message", resp.text)
            except Exception:
                pass
            raise APIError(resp.status_code, str(detail))
        return resp

    def _parse(self, model: type[M], resp: httpx.Response) -> M:
        """Validate the ``data`` envelope of a response into ``model``."""
        try:
            return model.model_validate(resp.json()["data"])
        except (ValueError, KeyError, TypeError, ValidationError):
            raise APIError(resp.status_code, f"malformed {model.__name__} response")

    # ── High-level methods ───────────────────────────────────────────────

    async def whoami(self) -> Whoami:
        """GET /v2/whoami"""
        resp = await self._request("GET", "/v2/whoami")
        return self._parse(Whoami, resp)

    async def account_id(self) -> str:
        """Resolve the account the token is bound to."""
        who = await self.whoami()
        if who.account is None:
            raise APIError(0, "token is not bound to an account (use an account access token)")
        return str(who.account.id)

    async def create_record(
        self, account_id: str, zone: str, attributes: ZoneRecordAttributes,
    ) -> ZoneRecord:
        """POST /v2/{account}/zones/{zone}/records"""
        resp = await self._request(
            "POST",
            f"/v2/{account_id}/zones/{zone}/records",
            json_data=attributes.model_dump(exclude_none=True),
        )
        return self._parse(ZoneRecord, resp)

    async def check_distribution(self, account_id: str, zone: str, record_id: int) -> bool:
        """GET /v2/{account}/zones/{zone}/records/{id}/distribution"""
        resp = await self._request(
            "GET", f"/v2/{account_id}/zones/{zone}/records/{record_id}/distribution",
        )
        return self._parse(ZoneDistribution, resp).distributed

    async def delete_record(self, account_id: str, zone: str, record_id: int) -> None:
        """DELETE /v2/{account}/zones/{zone}/records/{id}"""
        await self._request("DELETE", f"/v2/{account_id}/zones/{zone}/records/{record_id}")
