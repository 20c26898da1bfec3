"""MCP Server for PillNow Schedule Service.

Read-only MCP tools so AI agents can answer questions about an elder's
dispenser: what is in each container, which doses are planned, what is next.
Uses the same database as the REST API.

Transport Support:
- stdio: Standard input/output (local process communication)
- sse: Server-Sent Events over HTTP (network access)
"""

import os
from datetime import datetime, timedelta
from typing import Optional

from mcp.server.fastmcp import FastMCP

import crud
import database
from config import settings
from logger_config import setup_logger
from reconciler import medication_names, reconcile_containers, resolve_pill_name

logger = setup_logger(__name__, 'mcp.log')

mcp = FastMCP(
    "PillNowSchedules",
    host=settings.MCP_HOST,
    port=settings.MCP_PORT
)


@mcp.tool()
def get_container_schedule(user_id: int) -> str:
    """Show the current medication and alarm times of each dispenser container.

    Args:
        user_id: Elder's user id

    Returns:
        One block per container (1-3)
    """
    db = database.SessionLocal()
    try:
        views = reconcile_containers(crud.list_schedules(db, user=user_id), crud.list_medications(db))

        result = [f"Containers for user {user_id}:"]
        for container, view in views.items():
            if view.pill is None:
                result.append(f"\n• Container {container}: empty")
                continue
            times = ", ".join(a.strftime("%Y-%m-%d %H:%M") for a in sorted(view.alarms)) or "no alarms"
            result.append(f"\n• Container {container}: {view.pill}\n  Alarms: {times}")
        return "\n".join(result)
    finally:
        db.close()


@mcp.tool()
def list_schedules(user_id: int, container: Optional[int] = None) -> str:
    """List an elder's schedule records, newest first.

    Args:
        user_id: Elder's user id
        container: Optional container filter (1, 2 or 3)

    Returns:
        Formatted list of records or message if none found
    """
    db = database.SessionLocal()
    try:
        records = crud.list_schedules(db, user=user_id, container=container)
        if not records:
            filter_text = f" in container {container}" if container else ""
            return f"No schedules found{filter_text}."

        names = medication_names(crud.list_medications(db))
        result = [f"Found {len(records)} schedule(s):\n"]
        for r in records:
            result.append(
                f"\n• [{r.status}] {resolve_pill_name(r.medication, names)}\n"
                f"  ID: {r.schedule_id}\n"
                f"  Container: {r.container}\n"
                f"  At: {r.date} {r.time}\n"
                f"  Alert sent: {'yes' if r.alert_sent else 'no'}"
            )
        return "\n".join(result)
    finally:
        db.close()


@mcp.tool()
def list_upcoming_doses(user_id: int, hours: int = 24) -> str:
    """List pending doses due in the next few hours.

    Args:
        user_id: Elder's user id
        hours: Look-ahead window in hours (default: 24)

    Returns:
        Upcoming doses, soonest first
    """
    db = database.SessionLocal()
    try:
        now = datetime.now()
        records = crud.get_upcoming_schedules(db, user_id, now, now + timedelta(hours=hours))
        if not records:
            return f"No doses due in the next {hours} hour(s). ✓"

        names = medication_names(crud.list_medications(db))
        result = [f"⏰ {len(records)} dose(s) in the next {hours} hour(s):\n"]
        for r in records:
            result.append(
                f"\n• {r.date} {r.time} - {resolve_pill_name(r.medication, names)} "
                f"(container {r.container})"
            )
        return "\n".join(result)
    finally:
        db.close()


if __name__ == "__main__":
    transport = os.getenv("MCP_TRANSPORT", settings.MCP_TRANSPORT).lower()

    if transport == "sse":
        logger.info(f"Starting MCP server with SSE transport on {settings.MCP_HOST}:{settings.MCP_PORT}")
        mcp.run(transport="sse")
    else:
        logger.info("Starting MCP server with stdio transport")
        mcp.run(transport="stdio")
