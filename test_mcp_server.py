"""Tests for the MCP tools."""

import crud
import mcp_server


def test_container_schedule_tool(db, catalog):
    crud.create_schedule(db, {'user': 3, 'medication': catalog['Aspirin'], 'container': 2,
                              'date': '2024-06-01', 'time': '08:00'})

    text = mcp_server.get_container_schedule(3)
    assert "Container 1: empty" in text
    assert "Container 2: Aspirin" in text
    assert "2024-06-01 08:00" in text


def test_list_schedules_tool(db, catalog):
    assert mcp_server.list_schedules(3) == "No schedules found."

    crud.create_schedule(db, {'user': 3, 'medication': catalog['Metformin'], 'container': 1,
                              'date': '2024-06-01', 'time': '08:00'})
    text = mcp_server.list_schedules(3, container=1)
    assert "Found 1 schedule(s)" in text
    assert "Metformin" in text
    assert mcp_server.list_schedules(3, container=2) == "No schedules found in container 2."


def test_upcoming_doses_tool_with_nothing_planned():
    assert mcp_server.list_upcoming_doses(3, hours=6) == "No doses due in the next 6 hour(s). ✓"
