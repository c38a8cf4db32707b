"""OrderPulse CLI — serve the API, watch the live feed, drive orders.

Usage:
    orderpulse serve --reload                          # Run the API + /ws
    orderpulse watch -u u1 -n Alice --order 3f2a...    # Stream live events
    orderpulse orders list --status pending            # List orders
    orderpulse orders create "Alice Smith" 129.99      # Create an order
    orderpulse orders update-status 3f2a... completed  # Change status
    orderpulse orders bulk-status completed ID ID ...  # One bulk update
    orderpulse orders delete 3f2a...                   # Delete an order
    orderpulse emergency "Down for maintenance" -k maintenance
    orderpulse stats                                   # Connections + metrics
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import json
import os
import sys
from typing import Optional

import click
import httpx

from orderpulse import __version__
from orderpulse.config import settings

# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------


def _api_url() -> str:
    return os.environ.get("ORDERPULSE_API_URL", settings.api_url).rstrip("/")


def _ws_url() -> str:
    return os.environ.get("ORDERPULSE_WS_URL", settings.ws_url)


def _client():
    """Build an OrdersClient pointed at the OrderPulse server."""
    from orderpulse.client.http import OrdersClient

    return OrdersClient(base_url=_api_url())


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _run(coro):
    """Run an async coroutine from synchronous Click handler.

    Handles nested event loops (e.g. when invoked via Click CliRunner
    inside an existing async context like tests) by offloading to a thread.
    """
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        # No running loop: normal CLI invocation
        return asyncio.run(coro)
    else:
        with concurrent.futures.ThreadPoolExecutor(max_workers=1) as pool:
            return pool.submit(asyncio.run, coro).result()


def _pretty_json(data: dict | list) -> str:
    return json.dumps(data, indent=2, default=str)


def _print_table(rows: list[dict], columns: list[tuple[str, str, int]]):
    """Print a simple ASCII table.

    columns: list of (header, dict_key, width)
    """
    header = "  ".join(h.ljust(w) for h, _, w in columns)
    click.secho(header, bold=True)
    click.echo("-" * len(header))
    for row in rows:
        line = "  ".join(str(row.get(k, "—"))[:w].ljust(w) for _, k, w in columns)
        click.echo(line)


def _status_color(status: str) -> str:
    """Map order statuses and notification severities to click colors."""
    colors = {
        "pending": "yellow",
        "processing": "cyan",
        "completed": "green",
        "cancelled": "red",
        "success": "green",
        "info": "blue",
        "warning": "yellow",
        "error": "red",
        "connected": "green",
        "reconnecting": "yellow",
        "failed": "red",
    }
    return colors.get(status, "white")


def _not_found(e: httpx.HTTPStatusError, order_id: str):
    if e.response.status_code == 404:
        click.secho(f"Order {order_id} not found.", fg="red", err=True)
        sys.exit(1)
    raise e


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(version=__version__, prog_name="orderpulse")
def main():
    """OrderPulse — real-time order updates for dashboard clients."""


# ---------------------------------------------------------------------------
# orderpulse serve
# ---------------------------------------------------------------------------


@main.command()
@click.option("--host", default=None, help="Bind address (default: ORDERPULSE_HOST)")
@click.option("--port", "-p", type=int, default=None, help="Port (default: ORDERPULSE_PORT)")
@click.option("--reload", is_flag=True, help="Restart on code changes")
def serve(host: Optional[str], port: Optional[int], reload: bool):
    """Run the API server with the /ws endpoint."""
    import uvicorn

    uvicorn.run(
        "orderpulse.main:app",
        host=host or settings.host,
        port=port or settings.port,
        reload=reload,
    )


# ---------------------------------------------------------------------------
# orderpulse watch
# ---------------------------------------------------------------------------


@main.command()
@click.option("--user-id", "-u", help="User id sent in the authenticate handshake")
@click.option("--name", "-n", help="Display name (required with --user-id)")
@click.option("--order", "-o", "orders", multiple=True, help="Order id to watch in detail")
@click.option("--url", help="WebSocket URL (default: ORDERPULSE_WS_URL)")
def watch(user_id: Optional[str], name: Optional[str], orders: tuple[str, ...], url: Optional[str]):
    """Stream live order events until interrupted.

    Without --user-id/--name the connection stays anonymous and only
    receives the detail rooms passed with --order.
    """
    if bool(user_id) != bool(name):
        click.secho("Error: --user-id and --name go together", fg="red", err=True)
        sys.exit(1)
    try:
        failed = _run(_watch_impl(url or _ws_url(), user_id, name, orders))
    except KeyboardInterrupt:
        return
    if failed:
        sys.exit(1)


async def _watch_impl(url: str, user_id: Optional[str], name: Optional[str],
                      orders: tuple[str, ...]) -> bool:
    from orderpulse.client.subscriber import (
        CONNECTION_FAILED,
        CONNECTION_STATE,
        LATENCY_UPDATE,
        ReconnectingSubscriber,
    )
    from orderpulse.schemas.realtime import (
        BULK_ORDER_UPDATE,
        EMERGENCY_NOTIFICATION,
        NOTIFICATION,
        ORDER_DETAIL_UPDATE,
        ORDER_UPDATE,
        SYSTEM_STATS,
        USER_TYPING,
    )

    subscriber = ReconnectingSubscriber(url, user_id=user_id, name=name)
    done = asyncio.Event()
    failed = False

    def on_state(state):
        click.echo(f"● {click.style(state.value, fg=_status_color(state.value))}")

    def on_failed(error):
        nonlocal failed
        failed = True
        click.secho(f"Giving up: {error}", fg="red", err=True)
        done.set()

    def on_update(update):
        status = update.status or "—"
        amount = f"${update.amount:.2f}" if update.amount is not None else ""
        click.echo(
            f"  [{update.type}] {update.order_id[:8]}  "
            f"{click.style(status, fg=_status_color(status))}  "
            f"{update.customer_name or ''}  {amount}"
        )

    def on_bulk(updates):
        click.secho(f"  bulk update: {len(updates)} orders", bold=True)
        for update in updates:
            on_update(update)

    def on_notification(n):
        click.echo(f"  {click.style(n.title, fg=_status_color(n.type), bold=True)}: {n.message}")

    def on_emergency(n):
        click.secho(f"  !! {n.title} [{n.emergency_type}]: {n.message}", fg="red", bold=True)

    subscriber.on(CONNECTION_STATE, on_state)
    subscriber.on(CONNECTION_FAILED, on_failed)
    subscriber.on(ORDER_UPDATE, on_update)
    subscriber.on(ORDER_DETAIL_UPDATE, lambda u: click.echo(f"  detail → {u.order_id[:8]} {u.type}"))
    subscriber.on(BULK_ORDER_UPDATE, on_bulk)
    subscriber.on(NOTIFICATION, on_notification)
    subscriber.on(EMERGENCY_NOTIFICATION, on_emergency)
    subscriber.on(SYSTEM_STATS, lambda s: click.echo(
        f"  {s.connected_users} users, {s.total_sessions} sessions, up {s.server_uptime:.0f}s"
    ))
    subscriber.on(USER_TYPING, lambda t: click.echo(f"  {t.user_name} is typing on {t.order_id[:8]}"))
    subscriber.on(LATENCY_UPDATE, lambda ms: click.echo(f"  latency {ms:.0f} ms"))

    for order_id in orders:
        await subscriber.join_order_room(order_id)

    try:
        await subscriber.connect()
        await done.wait()
    finally:
        await subscriber.disconnect()
    return failed


# ---------------------------------------------------------------------------
# orderpulse orders ...
# ---------------------------------------------------------------------------


@main.group()
def orders():
    """List, create, update and delete orders."""


@orders.command("list")
@click.option("--status", "-s", "status_filter", help="Filter by status")
@click.option("--search", "-q", help="Match name, email, id or status")
@click.option("--limit", "-l", default=50, help="Max results")
@click.option("--json", "as_json", is_flag=True, help="Print raw JSON")
def list_orders(status_filter: Optional[str], search: Optional[str], limit: int, as_json: bool):
    """List orders, newest first."""
    _run(_list_impl(status_filter, search, limit, as_json))


async def _list_impl(status_filter: Optional[str], search: Optional[str], limit: int,
                     as_json: bool):
    async with _client() as c:
        page = await c.list_orders(status=status_filter, search=search, limit=limit)

    if as_json:
        click.echo(_pretty_json(page))
        return

    rows = page["orders"]
    if not rows:
        click.echo("No orders found.")
        return

    click.secho(f"Orders ({len(rows)}):", bold=True)
    click.echo()
    _print_table(rows, [
        ("ID", "order_id", 36),
        ("Status", "status", 11),
        ("Amount", "amount", 10),
        ("Customer", "customer_name", 30),
    ])
    if page.get("next_offset") is not None:
        click.echo(f"\n  More: --limit {limit} (next offset {page['next_offset']})")


@orders.command("create")
@click.argument("customer_name")
@click.argument("amount", type=float)
@click.option("--email", "-e", help="Customer email")
def create_order(customer_name: str, amount: float, email: Optional[str]):
    """Create an order for CUSTOMER_NAME totalling AMOUNT."""
    _run(_create_impl(customer_name, amount, email))


async def _create_impl(customer_name: str, amount: float, email: Optional[str]):
    async with _client() as c:
        order = await c.create_order(customer_name, amount, customer_email=email)
    click.secho(f"Created order {order['order_id']}", fg="green")
    click.echo(f"  {order['customer_name']}  ${order['amount']:.2f}  {order['status']}")


@orders.command("update-status")
@click.argument("order_id")
@click.argument("status", type=click.Choice(["pending", "processing", "completed", "cancelled"]))
def update_status(order_id: str, status: str):
    """Move ORDER_ID to STATUS."""
    _run(_update_status_impl(order_id, status))


async def _update_status_impl(order_id: str, status: str):
    async with _client() as c:
        try:
            order = await c.update_status(order_id, status)
        except httpx.HTTPStatusError as e:
            _not_found(e, order_id)
    click.secho(
        f"Order {order_id} → {click.style(order['status'], fg=_status_color(order['status']))}"
    )


@orders.command("bulk-status")
@click.argument("status", type=click.Choice(["pending", "processing", "completed", "cancelled"]))
@click.argument("order_ids", nargs=-1, required=True)
def bulk_status(status: str, order_ids: tuple[str, ...]):
    """Set STATUS on every ORDER_ID in one bulk update."""
    _run(_bulk_status_impl(status, list(order_ids)))


async def _bulk_status_impl(status: str, order_ids: list[str]):
    async with _client() as c:
        updated = await c.bulk_update_status(order_ids, status)
    click.secho(f"{len(updated)} orders updated to {status}", fg="green")
    skipped = len(order_ids) - len(updated)
    if skipped:
        click.secho(f"  {skipped} unknown id(s) skipped", fg="yellow")


@orders.command("delete")
@click.argument("order_id")
@click.confirmation_option(prompt="Delete this order?")
def delete_order(order_id: str):
    """Delete ORDER_ID."""
    _run(_delete_impl(order_id))


async def _delete_impl(order_id: str):
    async with _client() as c:
        try:
            await c.delete_order(order_id)
        except httpx.HTTPStatusError as e:
            _not_found(e, order_id)
    click.secho(f"Deleted order {order_id}", fg="green")


# ---------------------------------------------------------------------------
# orderpulse emergency / stats
# ---------------------------------------------------------------------------


@main.command()
@click.argument("message")
@click.option("--kind", "-k", type=click.Choice(["maintenance", "alert", "update"]),
              default="alert", help="Emergency type (default: alert)")
def emergency(message: str, kind: str):
    """Push an emergency notification to every connected client."""
    _run(_emergency_impl(message, kind))


async def _emergency_impl(message: str, kind: str):
    async with _client() as c:
        result = await c.emergency_broadcast(message, kind)
    click.secho(f"Emergency broadcast delivered to {result['delivered']} connection(s)", fg="red")


@main.command()
def stats():
    """Show live connection stats and order metrics."""
    _run(_stats_impl())


async def _stats_impl():
    async with _client() as c:
        realtime = await c.realtime_stats()
        metrics = await c.metrics()

    click.secho("Real-time:", bold=True)
    click.echo(f"  Connected users:  {realtime['connectedUsers']}")
    click.echo(f"  Total sessions:   {realtime['totalSessions']}")
    click.echo(f"  Uptime:           {realtime['serverUptime']:.0f}s")
    click.echo()
    click.secho("Orders:", bold=True)
    m = metrics["metrics"]
    click.echo(f"  Count:            {m['orderCount']}")
    click.echo(f"  Revenue:          ${m['totalRevenue']:.2f}")
    click.echo(f"  Average value:    ${m['averageOrderValue']:.2f}")
    for status_name, count in sorted(m.get("statusCounts", {}).items()):
        click.echo(f"    {click.style(status_name, fg=_status_color(status_name)):20s}  {count}")


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    main()
