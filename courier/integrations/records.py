"""Async client for the clinical records service.

Implements both downstream capabilities the pipelines need:
``register_path`` (document pipeline) and ``ingest`` (message pipeline).
Neither raises on service errors; failures become ``False`` or a non-200
status code and are reported by the pipeline.
"""

import asyncio
import logging

import httpx
from httpx import RemoteProtocolError

logger = logging.getLogger(__name__)

MAX_RETRIES = 2
RETRY_DELAY = 1.0
# Status reported when the ingestion endpoint cannot be reached
UNREACHABLE_STATUS = 500


async def _retry_on_disconnect(coro_fn, *args, **kwargs):
    """Retry an async call on ``RemoteProtocolError`` (server disconnect).

    Retries up to ``MAX_RETRIES`` times with a fixed delay between attempts.
    """
    for attempt in range(MAX_RETRIES + 1):
        try:
            return await coro_fn(*args, **kwargs)
        except RemoteProtocolError:
            if attempt == MAX_RETRIES:
                raise
            logger.warning(
                "Connection dropped (attempt %d/%d), retrying...",
                attempt + 1,
                MAX_RETRIES,
            )
            await asyncio.sleep(RETRY_DELAY)


class RecordsClient:
    """Async HTTP client for the records service.

    Usage::

        async with RecordsClient(base_url, token) as client:
            ok = await client.register_path("TPL001", "8842", "/archive/2025/05/30/x.pdf")
            code = await client.ingest("ORU_0001.hl7")
    """

    def __init__(
        self,
        base_url: str,
        token: str = "",
        *,
        register_path: str = "/documents/path",
        ingest_path: str = "/hl7-parser-end-point.php",
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Token {token}"
        self._register_path = register_path
        self._ingest_path = ingest_path
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=30.0,
            transport=transport,
        )

    async def __aenter__(self) -> "RecordsClient":
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    async def close(self) -> None:
        await self._client.aclose()

    async def _post_raw(self, path: str, payload: dict) -> httpx.Response:
        response = await self._client.post(path, json=payload)
        response.raise_for_status()
        return response

    async def _get_raw(self, path: str, params: dict) -> httpx.Response:
        response = await self._client.get(path, params=params)
        response.raise_for_status()
        return response

    async def register_path(
        self, template_code: str, render_number: str, destination_path: str
    ) -> bool:
        """Persist the archive path of a report against its order."""
        payload = {
            "template_code": template_code,
            "render_number": render_number,
            "document_path": destination_path,
        }
        try:
            await _retry_on_disconnect(self._post_raw, self._register_path, payload)
        except httpx.HTTPError as exc:
            logger.error(
                "Registering %s/%s failed: %s", template_code, render_number, exc
            )
            return False
        return True

    async def ingest(self, file_name: str) -> int:
        """Ask the service to parse a lab message by filename.

        Returns the ``statusCode`` field of the JSON response.
        """
        try:
            response = await _retry_on_disconnect(
                self._get_raw, self._ingest_path, {"file": file_name}
            )
            data = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.error("Error while processing HL7 content for %s: %s", file_name, exc)
            return UNREACHABLE_STATUS

        logger.debug("Ingest response for %s: %s", file_name, data)
        try:
            return int(data["statusCode"])
        except (KeyError, TypeError, ValueError):
            logger.error("Malformed ingest response for %s: %r", file_name, data)
            return UNREACHABLE_STATUS
