"""Content management API client with retry.

Responsibilities:
- HTTP requests to the stack's management endpoint
- Retry on transient errors (exponential backoff)
- Bounded concurrency and request rate (shared by all calls on one client)
- Transparent pagination for entry queries
- Error classification (not found / auth / other)

Does NOT know about bots or knowledge. Credentials are always passed in
explicitly: one client per stack, never a shared module-level instance.
"""
import asyncio
import json
import logging
import time
from dataclasses import dataclass

import httpx

from services.contentstack.config import RETRY_STATUSES, SYSTEM_FIELDS

logger = logging.getLogger("botdesk.contentstack.client")


class ContentstackError(Exception):
    """Management API error."""
    def __init__(self, code: str, message: str, status: int = 0):
        self.code = code
        self.status = status
        super().__init__(f"[{code}] {message}")


class EntryNotFoundError(ContentstackError):
    """The requested entry does not exist."""
    pass


class ContentstackAuthError(ContentstackError):
    """Stack API key or management token rejected."""
    pass


@dataclass(frozen=True)
class StackCredentials:
    api_key: str
    management_token: str
    host: str = "api.contentstack.io"

    def __repr__(self) -> str:
        return f"StackCredentials(api_key={self.api_key[:4]}..., host={self.host})"


class ManagementClient:

    def __init__(
        self,
        credentials: StackCredentials,
        timeout: float = 15.0,
        retry_limit: int = 5,
        page_size: int = 100,
        max_concurrency: int = 5,
        rate_limit: float = 0.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        host = credentials.host.rstrip("/")
        if not host.startswith("http"):
            host = f"https://{host}"
        self.base_url = f"{host}/v3"
        self.retry_limit = max(1, retry_limit)
        self.page_size = page_size
        # At most max_concurrency requests in flight; rate_limit <= 0 means no spacing
        self._semaphore = asyncio.Semaphore(max(1, max_concurrency))
        self._rate_lock = asyncio.Lock()
        self._rate_interval = 1.0 / rate_limit if rate_limit > 0 else 0.0
        self._last_request_time = 0.0
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            headers={
                "api_key": credentials.api_key,
                "authorization": credentials.management_token,
                "Content-Type": "application/json",
            },
            transport=transport,
        )

    async def __aenter__(self) -> "ManagementClient":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()

    async def request(
        self,
        method: str,
        path: str,
        params: dict | None = None,
        body: dict | None = None,
    ) -> dict:
        """Single API call with retry on transient failures."""
        last_exc: Exception | None = None

        for attempt in range(self.retry_limit):
            try:
                async with self._semaphore:
                    await self._wait_rate_limit()
                    resp = await self._client.request(method, path, params=params, json=body)
            except httpx.TransportError as exc:
                last_exc = exc
                backoff = 2 ** attempt
                logger.warning(
                    "CMS connection error on %s %s: %s, retry %d/%d in %ds",
                    method, path, exc, attempt + 1, self.retry_limit, backoff,
                )
                await asyncio.sleep(backoff)
                continue

            if resp.status_code in RETRY_STATUSES:
                last_exc = self._error_from_response(resp)
                backoff = 2 ** attempt
                logger.warning(
                    "CMS HTTP %d on %s %s, retry %d/%d in %ds",
                    resp.status_code, method, path, attempt + 1, self.retry_limit, backoff,
                )
                await asyncio.sleep(backoff)
                continue

            if resp.status_code >= 400:
                raise self._error_from_response(resp)

            if not resp.content:
                return {}
            try:
                return resp.json()
            except ValueError as exc:
                raise ContentstackError("malformed_response", str(exc), resp.status_code) from exc

        if isinstance(last_exc, ContentstackError):
            raise last_exc
        raise ContentstackError(
            "unreachable",
            f"{method} {path} failed after {self.retry_limit} attempts: {last_exc}",
        ) from last_exc

    async def _wait_rate_limit(self) -> None:
        """Space request starts at least _rate_interval apart."""
        if not self._rate_interval:
            return
        async with self._rate_lock:
            elapsed = time.monotonic() - self._last_request_time
            if elapsed < self._rate_interval:
                await asyncio.sleep(self._rate_interval - elapsed)
            self._last_request_time = time.monotonic()

    @staticmethod
    def _error_from_response(resp: httpx.Response) -> ContentstackError:
        try:
            data = resp.json()
        except ValueError:
            data = {}
        code = str(data.get("error_code", resp.status_code))
        message = data.get("error_message") or resp.text[:200] or resp.reason_phrase

        if resp.status_code == 404:
            return EntryNotFoundError(code, message, resp.status_code)
        if resp.status_code in (401, 403):
            return ContentstackAuthError(code, message, resp.status_code)
        return ContentstackError(code, message, resp.status_code)

    # ------------------------------------------------------------------
    # Entries
    # ------------------------------------------------------------------
    async def fetch_entry(self, content_type: str, uid: str) -> dict:
        """Fetch one entry by uid. Raises EntryNotFoundError if missing."""
        data = await self.request("GET", f"/content_types/{content_type}/entries/{uid}")
        entry = data.get("entry")
        if not entry:
            raise EntryNotFoundError("141", f"{content_type} entry {uid} not found", 404)
        return entry

    async def query_entries(self, content_type: str, query: dict | None = None) -> list[dict]:
        """Fetch all entries matching a JSON query, following pagination."""
        entries: list[dict] = []
        skip = 0

        while True:
            params = {"skip": skip, "limit": self.page_size, "include_count": "true"}
            if query:
                params["query"] = json.dumps(query)
            data = await self.request(
                "GET", f"/content_types/{content_type}/entries", params=params,
            )
            if "entries" not in data:
                raise ContentstackError(
                    "malformed_response", f"no 'entries' in {content_type} query response",
                )
            page = data["entries"] or []
            entries.extend(page)

            total = data.get("count")
            if len(page) < self.page_size:
                break
            if total is not None and len(entries) >= total:
                break
            skip += self.page_size

        return entries

    async def create_entry(self, content_type: str, payload: dict) -> dict:
        data = await self.request(
            "POST", f"/content_types/{content_type}/entries", body={"entry": payload},
        )
        return data.get("entry", {})

    async def update_entry(self, content_type: str, entry: dict) -> dict:
        """Write back a (previously fetched) entry. System fields are stripped."""
        uid = entry.get("uid")
        if not uid:
            raise ValueError("update_entry requires an entry with a uid")
        payload = {
            k: v for k, v in entry.items()
            if k not in SYSTEM_FIELDS and not k.startswith("_")
        }
        data = await self.request(
            "PUT", f"/content_types/{content_type}/entries/{uid}", body={"entry": payload},
        )
        return data.get("entry", {})

    async def delete_entry(self, content_type: str, uid: str) -> None:
        await self.request("DELETE", f"/content_types/{content_type}/entries/{uid}")

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()


def management_client_for(
    credentials: StackCredentials,
    transport: httpx.AsyncBaseTransport | None = None,
) -> ManagementClient:
    """Build a client scoped to one stack's credentials."""
    from config import settings

    return ManagementClient(
        credentials,
        timeout=settings.CMS_TIMEOUT,
        retry_limit=settings.CMS_RETRY_LIMIT,
        page_size=settings.CMS_PAGE_SIZE,
        max_concurrency=settings.CMS_MAX_CONCURRENCY,
        rate_limit=settings.CMS_RATE_LIMIT,
        transport=transport,
    )
