from urllib.parse import quote

import httpx

from media_ingest.errors import StorageError
from media_ingest.models import Session, StoredObject


class SupabaseStorage:
    """Supabase Storage REST client bound to one project."""

    def __init__(
        self,
        base_url: str,
        anon_key: str,
        timeout_s: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._anon_key = anon_key
        self._timeout_s = timeout_s
        self._transport = transport

    async def upload(
        self,
        bucket: str,
        path: str,
        content: bytes,
        *,
        content_type: str,
        cache_control: str,
        upsert: bool,
        session: Session | None = None,
    ) -> StoredObject | None:
        url = f"{self._base_url}/storage/v1/object/{bucket}/{quote(path)}"
        headers = {
            **self._auth_headers(session),
            "Content-Type": content_type,
            "Cache-Control": f"max-age={cache_control}",
            "x-upsert": "true" if upsert else "false",
        }
        response = await self._send("POST", url, headers=headers, content=content)
        _raise_for_storage_error(response)

        body = _json_or_empty(response)
        if not body.get("Key") and not body.get("Id"):
            return None
        return StoredObject(bucket=bucket, path=path)

    def get_public_url(self, bucket: str, path: str) -> str:
        return f"{self._base_url}/storage/v1/object/public/{bucket}/{quote(path)}"

    async def remove(self, bucket: str, paths: list[str], session: Session | None = None) -> None:
        url = f"{self._base_url}/storage/v1/object/{bucket}"
        response = await self._send(
            "DELETE",
            url,
            headers=self._auth_headers(session),
            json={"prefixes": paths},
        )
        _raise_for_storage_error(response)

    def _auth_headers(self, session: Session | None) -> dict[str, str]:
        token = session.access_token if session else self._anon_key
        return {"apikey": self._anon_key, "Authorization": f"Bearer {token}"}

    async def _send(self, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            async with httpx.AsyncClient(timeout=self._timeout_s, transport=self._transport) as client:
                return await client.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            raise StorageError(f"storage request failed: {exc}") from exc


class SupabaseSessionProvider:
    """Resolves the caller's bearer token to a Supabase user session."""

    def __init__(
        self,
        base_url: str,
        anon_key: str,
        access_token: str | None,
        timeout_s: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._anon_key = anon_key
        self._access_token = access_token
        self._timeout_s = timeout_s
        self._transport = transport

    async def get_session(self) -> Session | None:
        if not self._access_token:
            return None

        headers = {"apikey": self._anon_key, "Authorization": f"Bearer {self._access_token}"}
        async with httpx.AsyncClient(timeout=self._timeout_s, transport=self._transport) as client:
            response = await client.get(f"{self._base_url}/auth/v1/user", headers=headers)

        if not response.is_success:
            return None
        user_id = _json_or_empty(response).get("id")
        if not user_id:
            return None
        return Session(user_id=str(user_id), access_token=self._access_token)


def _raise_for_storage_error(response: httpx.Response) -> None:
    if response.is_success:
        return
    body = _json_or_empty(response)
    message = body.get("message") or body.get("error") or response.text or f"HTTP {response.status_code}"
    # Storage puts its own code in the body; a missing bucket arrives as HTTP 400 / statusCode "404".
    status_code = _parse_status(body.get("statusCode")) or response.status_code
    raise StorageError(str(message), status_code=status_code)


def _parse_status(raw) -> int | None:
    try:
        return int(raw)
    except (TypeError, ValueError):
        return None


def _json_or_empty(response: httpx.Response) -> dict:
    try:
        value = response.json()
    except ValueError:
        return {}
    return value if isinstance(value, dict) else {}
