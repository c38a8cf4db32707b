"""HTTP client for the order REST API.

Learn: A thin httpx.AsyncClient wrapper. Every method returns the decoded
JSON (plain dicts) and raises httpx.HTTPStatusError on a non-2xx response,
which is exactly what OptimisticMutationTracker needs from a server call:

    tracker.optimistic_update(edited, lambda: client.update_order(id, status="completed"))

The client doesn't listen for events; the server pushes the resulting
order_update to every connected subscriber, this caller included.
"""

from typing import Any, Optional

import httpx

from orderpulse.config import settings

API_PREFIX = "/api/v1"


class OrdersClient:
    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._http = httpx.AsyncClient(
            base_url=(base_url or settings.api_url).rstrip("/"),
            timeout=timeout,
            transport=transport,
        )

    async def __aenter__(self) -> "OrdersClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        r = await self._http.request(method, f"{API_PREFIX}{path}", **kwargs)
        r.raise_for_status()
        if r.status_code == 204 or not r.content:
            return None
        return r.json()

    # ─── Orders ──────────────────────────────────────────

    async def list_orders(
        self,
        status: Optional[str] = None,
        search: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> dict:
        params: dict[str, Any] = {"limit": limit, "offset": offset}
        if status:
            params["status"] = status
        if search:
            params["search"] = search
        return await self._request("GET", "/orders", params=params)

    async def get_order(self, order_id: str) -> dict:
        return await self._request("GET", f"/orders/{order_id}")

    async def create_order(
        self,
        customer_name: str,
        amount: float,
        customer_email: Optional[str] = None,
        items: Optional[list[dict]] = None,
    ) -> dict:
        body: dict[str, Any] = {"customer_name": customer_name, "amount": amount}
        if customer_email:
            body["customer_email"] = customer_email
        if items:
            body["items"] = items
        return await self._request("POST", "/orders", json=body)

    async def update_order(self, order_id: str, **changes: Any) -> dict:
        """PATCH only the given fields (customer_name, customer_email, amount, status)."""
        body = {k: v for k, v in changes.items() if v is not None}
        return await self._request("PATCH", f"/orders/{order_id}", json=body)

    async def update_status(self, order_id: str, status: str) -> dict:
        return await self.update_order(order_id, status=status)

    async def bulk_update_status(self, order_ids: list[str], status: str) -> list[dict]:
        return await self._request(
            "POST", "/orders/bulk-status", json={"order_ids": order_ids, "status": status},
        )

    async def delete_order(self, order_id: str) -> None:
        await self._request("DELETE", f"/orders/{order_id}")

    async def metrics(self) -> dict:
        return await self._request("GET", "/orders/metrics")

    # ─── Real-time admin ─────────────────────────────────

    async def realtime_stats(self) -> dict:
        return await self._request("GET", "/realtime/stats")

    async def emergency_broadcast(self, message: str, kind: str = "alert") -> dict:
        return await self._request(
            "POST", "/realtime/emergency", json={"message": message, "kind": kind},
        )

    async def health(self) -> dict:
        return await self._request("GET", "/health")
