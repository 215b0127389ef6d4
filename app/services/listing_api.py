from httpx import AsyncClient, AsyncBaseTransport, HTTPError, InvalidURL, StreamError
from structlog import get_logger
from typing import Optional

logger = get_logger()

FALLBACK_MESSAGE = "Something went wrong"

class ListingApiError(Exception):
    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code

class ListingApiClient:
    def __init__(self, base_url: str, *, timeout: float = 30.0, transport: Optional[AsyncBaseTransport] = None):
        # A lot of gateways expose docs at /docs; never keep that in the API base
        base = base_url.rstrip("/")
        if base.endswith("/docs"):
            base = base[: -len("/docs")]
        self._base = base
        self._timeout = timeout
        self._transport = transport

    @property
    def create_url(self) -> str:
        return f"{self._base}/listing/create"

    async def create_listing(self, payload: dict, token: str | None = None) -> dict:
        """POST the listing and return the created record.

        Raises ListingApiError on transport errors, non-2xx responses,
        `success: false` bodies and bodies without an `_id`.
        """
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        try:
            async with AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                resp = await client.post(self.create_url, json=payload, headers=headers)
        except (HTTPError, InvalidURL, StreamError) as e:
            logger.error("Listing API request failed", upstream=self.create_url, error=str(e))
            raise ListingApiError(str(e) or "Submission failed") from e

        try:
            data = resp.json()
        except Exception:
            data = {}
        if not isinstance(data, dict):
            data = {"data": data}

        logger.info("Listing API upstream response", upstream=self.create_url, status_code=resp.status_code)
        if not 200 <= resp.status_code < 300 or data.get("success") is False:
            message = data.get("message") or FALLBACK_MESSAGE
            logger.warning("Listing API rejected listing", status_code=resp.status_code, error=message)
            raise ListingApiError(str(message), status_code=resp.status_code)
        if not data.get("_id"):
            logger.warning("Listing API response missing _id", status_code=resp.status_code)
            raise ListingApiError(FALLBACK_MESSAGE, status_code=resp.status_code)
        return data
