import asyncio
import logging
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import requests

from concierge.utils.coerce import parse_record, to_trimmed_string
from concierge.utils.errors import GatewayError


logger = logging.getLogger(__name__)


class GatewayClient:
    """
    Tool providers and platform loaders over the B2B HTTP gateway.

    Every response is a JSON ``{"data": ...}`` envelope; errors come back as
    ``{"error": "..."}`` with a non-2xx status. requests is blocking, so each
    call runs in a worker thread.
    """

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        timeout_seconds: float = 15.0,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout_seconds = timeout_seconds
        self.session = session or requests.Session()

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def _request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        payload: Optional[Dict[str, Any]] = None,
    ) -> Any:
        url = f"{self.base_url}{path}"
        clean_params = {key: value for key, value in (params or {}).items() if value is not None}
        clean_payload = (
            {key: value for key, value in payload.items() if value is not None} if payload is not None else None
        )

        try:
            response = self.session.request(
                method,
                url,
                params=clean_params or None,
                json=clean_payload,
                headers=self._headers(),
                timeout=self.timeout_seconds,
            )
        except requests.RequestException as exc:
            logger.exception("[Gateway] request failed", extra={"path": path})
            raise GatewayError("Gateway request failed") from exc

        if not 200 <= response.status_code < 300:
            logger.warning(
                "[Gateway] non-2xx response",
                extra={
                    "path": path,
                    "status_code": response.status_code,
                    "text_preview": response.text[:200],
                },
            )
            raise GatewayError(
                _error_message(response) or f"Gateway returned status code {response.status_code}",
                status_code=response.status_code,
            )

        try:
            body = response.json()
        except ValueError as exc:
            logger.warning(
                "[Gateway] invalid JSON response",
                extra={"path": path, "text_preview": response.text[:200]},
            )
            raise GatewayError("Gateway returned invalid JSON") from exc

        record = parse_record(body)
        if record is not None and "data" in record:
            return record["data"]
        return body

    async def _call(self, method: str, path: str, **kwargs: Any) -> Any:
        return await asyncio.to_thread(self._request, method, path, **kwargs)

    async def list_destinations(self, request: Dict[str, Any]) -> Dict[str, Any]:
        return await self._call("GET", "/v1/destinations", params=request)

    async def search_hotels(self, request: Dict[str, Any]) -> Dict[str, Any]:
        return await self._call("POST", "/v1/hotels/search", payload=request)

    async def fetch_transfer_rates(self, request: Dict[str, Any]) -> List[Dict[str, Any]]:
        data = await self._call("POST", "/v1/transfers/search", payload=request)
        record = parse_record(data)
        if record is not None:
            return record.get("transfers") or []
        return data if isinstance(data, list) else []

    async def fetch_excursions(self, limit: int) -> Dict[str, Any]:
        return await self._call("POST", "/v1/excursions/search", payload={"limit": limit})

    async def search_flights(self, request: Dict[str, Any]) -> Dict[str, Any]:
        return await self._call("POST", "/v1/flights/search", payload=request)

    async def quote_insurance(self, request: Dict[str, Any]) -> Dict[str, Any]:
        return await self._call("POST", "/v1/insurance/quote", payload=request)

    async def load_service_flags(self) -> Dict[str, Any]:
        data = await self._call("GET", "/v1/services/availability")
        record = parse_record(data) or {}
        return parse_record(record.get("flags")) or record

    async def load_user_signals(self, user_id: str) -> Optional[Dict[str, Any]]:
        return parse_record(await self._call("GET", f"/v1/users/{quote(user_id, safe='')}/signals"))


def _error_message(response: requests.Response) -> Optional[str]:
    try:
        body = response.json()
    except ValueError:
        return None
    record = parse_record(body) or {}
    return to_trimmed_string(record.get("error")) or to_trimmed_string(record.get("message"))
