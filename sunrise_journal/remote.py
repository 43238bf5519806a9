# -*- coding: utf-8 -*-
"""Hosted backend: PostgREST rows and GoTrue password auth over httpx.

One ``SupabaseClient`` owns the HTTP connection pool and the bearer token.
Its ``auth`` and ``rows`` attributes implement the identity-provider and
row-store contracts used by ``logic`` and ``store``.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional
import logging

import httpx

from .errors import AuthenticationFailure, ProfileConflict, RemoteUnavailable
from .models import EncryptedRecord, Identity

log = logging.getLogger(__name__)

REST_PREFIX = "/rest/v1"
AUTH_PREFIX = "/auth/v1"
ENTRY_COLUMNS = "user_id,date_key,encrypted_data,iv,updated_at"


class SupabaseClient:
    """HTTP client for a Supabase-style project."""

    def __init__(
        self,
        url: str,
        anon_key: str,
        *,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = url.rstrip("/")
        self.anon_key = anon_key
        self.timeout = timeout
        self.access_token: Optional[str] = None
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self.auth = RestAuthProvider(self)
        self.rows = RestRowStore(self)

    async def __aenter__(self) -> "SupabaseClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    def _headers(self, extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        headers = {
            "apikey": self.anon_key,
            "Authorization": f"Bearer {self.access_token or self.anon_key}",
            "Accept": "application/json",
        }
        if extra:
            headers.update(extra)
        return headers

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: Optional[Dict[str, str]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> httpx.Response:
        """Send one request; every failure becomes RemoteUnavailable."""
        client = self._get_client()
        try:
            response = await client.request(
                method,
                path,
                json=json,
                params=params,
                headers=self._headers(headers),
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            log.warning("%s %s returned HTTP %s", method, path, status)
            raise RemoteUnavailable(
                f"{method} {path} failed with HTTP {status}", status=status
            ) from exc
        except httpx.HTTPError as exc:
            log.warning("%s %s failed: %s", method, path, exc)
            raise RemoteUnavailable(f"{method} {path} failed: {exc}") from exc
        return response


class RestAuthProvider:
    """GoTrue email/password sign-in."""

    def __init__(self, client: SupabaseClient) -> None:
        self.client = client

    async def sign_in(self, email: str, password: str) -> Identity:
        try:
            response = await self.client.request(
                "POST",
                f"{AUTH_PREFIX}/token",
                params={"grant_type": "password"},
                json={"email": email, "password": password},
            )
        except RemoteUnavailable as exc:
            if exc.status in (400, 401, 403):
                raise AuthenticationFailure("Invalid login credentials") from exc
            raise
        data = _json_body(response)
        user = data.get("user") or {}
        self.client.access_token = data.get("access_token")
        return Identity(
            user_id=user["id"],
            email=user.get("email", email),
            access_token=self.client.access_token,
        )

    async def sign_out(self, identity: Identity) -> None:
        try:
            await self.client.request("POST", f"{AUTH_PREFIX}/logout")
        finally:
            self.client.access_token = None


class RestRowStore:
    """PostgREST implementation of the row-store contract."""

    def __init__(self, client: SupabaseClient) -> None:
        self.client = client

    async def get_profile_salt(self, user_id: str) -> Optional[str]:
        response = await self.client.request(
            "GET",
            f"{REST_PREFIX}/user_profiles",
            params={"select": "encryption_salt", "id": f"eq.{user_id}"},
        )
        rows = _json_body(response)
        if not rows:
            return None
        return rows[0].get("encryption_salt")

    async def insert_profile(self, user_id: str, salt: str) -> None:
        try:
            await self.client.request(
                "POST",
                f"{REST_PREFIX}/user_profiles",
                json={"id": user_id, "encryption_salt": salt},
                headers={"Prefer": "return=minimal"},
            )
        except RemoteUnavailable as exc:
            if exc.status == 409:
                raise ProfileConflict(f"Profile already exists for {user_id}") from exc
            raise

    async def select_entries(self, user_id: str) -> List[EncryptedRecord]:
        response = await self.client.request(
            "GET",
            f"{REST_PREFIX}/entries",
            params={
                "select": ENTRY_COLUMNS,
                "user_id": f"eq.{user_id}",
                "order": "date_key.desc",
            },
        )
        return [_to_record(r) for r in _json_body(response)]

    async def select_entry(self, user_id: str, date_key: str) -> Optional[EncryptedRecord]:
        response = await self.client.request(
            "GET",
            f"{REST_PREFIX}/entries",
            params={
                "select": ENTRY_COLUMNS,
                "user_id": f"eq.{user_id}",
                "date_key": f"eq.{date_key}",
            },
        )
        rows = _json_body(response)
        return _to_record(rows[0]) if rows else None

    async def upsert_entry(self, record: EncryptedRecord) -> None:
        await self.client.request(
            "POST",
            f"{REST_PREFIX}/entries",
            params={"on_conflict": "user_id,date_key"},
            json={
                "user_id": record.user_id,
                "date_key": record.date_key,
                "encrypted_data": record.ciphertext,
                "iv": record.iv,
                "updated_at": record.updated_at,
            },
            headers={"Prefer": "resolution=merge-duplicates,return=minimal"},
        )

    async def delete_entries(self, user_id: str) -> int:
        response = await self.client.request(
            "DELETE",
            f"{REST_PREFIX}/entries",
            params={"user_id": f"eq.{user_id}"},
            headers={"Prefer": "return=representation"},
        )
        deleted = _json_body(response) if response.content else []
        return len(deleted)


def _to_record(row: Dict[str, Any]) -> EncryptedRecord:
    return EncryptedRecord(
        user_id=row["user_id"],
        date_key=row["date_key"],
        ciphertext=row["encrypted_data"],
        iv=row["iv"],
        updated_at=row.get("updated_at") or "",
    )


def _json_body(response: httpx.Response) -> Any:
    """Decode a 2xx body; a non-JSON body is a RemoteUnavailable."""
    try:
        return response.json()
    except ValueError as exc:
        request = response.request
        log.warning("%s %s returned a non-JSON body", request.method, request.url.path)
        raise RemoteUnavailable(
            f"{request.method} {request.url.path} returned an unreadable body",
            status=response.status_code,
        ) from exc
