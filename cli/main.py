"""Compliance scheduler CLI: talk to a running scheduler API server."""

from __future__ import annotations

import json
import sys
from typing import Any

import click
import httpx
import yaml
from rich import box
from rich.console import Console
from rich.table import Table

console = Console()
err_console = Console(stderr=True)

_STATUS_COLOR: dict[str, str] = {
    "ENABLED": "green",
    "DISABLED": "yellow",
    "COMPLETED": "green",
    "FAILED": "red",
    "PROCESSING": "yellow",
    "TRIGGERED": "blue",
}

# Schedule fields accepted by PUT /schedules/{id}
_REQUEST_FIELDS = (
    "scheduleType", "tenantId", "cronExpression", "timezone", "enabled",
    "description", "target", "parameters", "flexibleWindowMinutes", "createdBy",
)


# ── Internal helpers ──────────────────────────────────────────────────────────


def _color(status: str) -> str:
    return _STATUS_COLOR.get(status, "white")


def _client(url: str) -> httpx.Client:
    return httpx.Client(base_url=url.rstrip("/"), timeout=30)


def _load_file(path: str) -> dict:
    with open(path) as f:
        return yaml.safe_load(f) if path.endswith((".yaml", ".yml")) else json.load(f)


def _die(msg: str, code: int = 1) -> None:
    err_console.print(f"[red]Error:[/] {msg}")
    sys.exit(code)


def _check(resp: httpx.Response) -> None:
    if not resp.is_error:
        return
    try:
        error = resp.json().get("error") or {}
    except ValueError:
        error = {}
    if error.get("message"):
        _die(f"{error['message']} ({error.get('code', resp.status_code)})")
    _die(f"HTTP {resp.status_code}: {resp.text}")


def _emit_json(data: Any) -> None:
    click.echo(json.dumps(data, indent=2, default=str))


def _parse_params(pairs: tuple[str, ...]) -> dict[str, str]:
    params: dict[str, str] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            _die(f"Invalid parameter '{pair}', expected key=value")
        params[key] = value
    return params


def _target_label(target: dict) -> str:
    name = target.get("workflowName") or target.get("functionName") or target.get("topicName") or "?"
    return f"{target.get('type', '?')}:{name}"


# ── Root group ────────────────────────────────────────────────────────────────


@click.group()
@click.option(
    "--url", "-u",
    default="http://localhost:8000",
    envvar="COMPLIANCE_API_URL",
    show_default=True,
    help="Scheduler API base URL.",
)
@click.option("--json", "json_output", is_flag=True, help="Output raw JSON.")
@click.pass_context
def cli(ctx: click.Context, url: str, json_output: bool) -> None:
    """Compliance scheduler: schedules and event routing CLI."""
    ctx.ensure_object(dict)
    ctx.obj["url"] = url
    ctx.obj["json_output"] = json_output


# ── schedule ─────────────────────────────────────────────────────────────────


@cli.group("schedule")
def schedule() -> None:
    """Manage compliance schedules."""


@schedule.command("list")
@click.option("--tenant", help="Filter by tenant id.")
@click.option("--type", "schedule_type", help="Filter by schedule type.")
@click.option("--status", type=click.Choice(["ENABLED", "DISABLED"]), help="Filter by state.")
@click.option("--limit", default=50, show_default=True, type=click.IntRange(1, 100))
@click.option("--next-token", help="Continue from a previous page.")
@click.pass_obj
def schedule_list(obj: dict, tenant: str | None, schedule_type: str | None,
                  status: str | None, limit: int, next_token: str | None) -> None:
    """List schedules."""
    params: dict[str, Any] = {"limit": limit}
    if next_token:
        params["nextToken"] = next_token
    if tenant:
        params["tenantId"] = tenant
    if schedule_type:
        params["scheduleType"] = schedule_type
    if status:
        params["status"] = status
    with _client(obj["url"]) as c:
        resp = c.get("/schedules", params=params)
    _check(resp)
    data = resp.json()

    if obj["json_output"]:
        _emit_json(data)
        return

    rows = data.get("schedules", [])
    if not rows:
        click.echo("No schedules found.")
        return

    table = Table(box=box.SIMPLE)
    table.add_column("Schedule ID", style="cyan")
    table.add_column("Tenant")
    table.add_column("Type")
    table.add_column("Cron")
    table.add_column("Target")
    table.add_column("State")
    table.add_column("Next Run")
    for row in rows:
        state = "ENABLED" if row.get("enabled") else "DISABLED"
        table.add_row(
            row["scheduleId"],
            row.get("tenantId", ""),
            row.get("scheduleType", ""),
            row.get("cronExpression", ""),
            _target_label(row.get("target") or {}),
            f"[{_color(state)}]{state}[/]",
            row.get("nextExecution") or "-",
        )
    console.print(table)
    if data.get("nextToken"):
        click.echo(f"More results: --next-token {data['nextToken']}")


@schedule.command("get")
@click.argument("schedule_id")
@click.pass_obj
def schedule_get(obj: dict, schedule_id: str) -> None:
    """Show one schedule."""
    with _client(obj["url"]) as c:
        resp = c.get(f"/schedules/{schedule_id}")
    _check(resp)
    _print_schedule(resp.json(), obj["json_output"])


def _print_schedule(data: dict, json_output: bool) -> None:
    if json_output:
        _emit_json(data)
        return
    state = "ENABLED" if data.get("enabled") else "DISABLED"
    console.print(f"[cyan]{data['scheduleId']}[/]  [{_color(state)}]{state}[/]")
    for label, key in (("Tenant", "tenantId"), ("Type", "scheduleType"),
                       ("Cron", "cronExpression"), ("Timezone", "timezone"),
                       ("Next run", "nextExecution"), ("Description", "description")):
        console.print(f"  {label:<12} {data.get(key) or '-'}")
    console.print(f"  {'Target':<12} {_target_label(data.get('target') or {})}")


@schedule.command("create")
@click.argument("file", type=click.Path(exists=True))
@click.pass_obj
def schedule_create(obj: dict, file: str) -> None:
    """Create a schedule from a YAML or JSON file.

    \b
    File format (YAML example):
      scheduleType: compliance-scan
      tenantId: tenant-a
      cronExpression: "0 6 * * *"
      target:
        type: workflow
        workflowName: ComplianceScanWorkflow
    """
    payload = _load_file(file)
    with _client(obj["url"]) as c:
        resp = c.post("/schedules", json=payload)
    _check(resp)
    data = resp.json()

    if obj["json_output"]:
        _emit_json(data)
        return

    click.echo(f"Created  {data['scheduleId']}  next: {data.get('nextExecution') or '-'}")


@schedule.command("update")
@click.argument("schedule_id")
@click.argument("file", type=click.Path(exists=True))
@click.pass_obj
def schedule_update(obj: dict, schedule_id: str, file: str) -> None:
    """Replace a schedule with the contents of a YAML or JSON file."""
    payload = _load_file(file)
    with _client(obj["url"]) as c:
        resp = c.put(f"/schedules/{schedule_id}", json=payload)
    _check(resp)
    data = resp.json()

    if obj["json_output"]:
        _emit_json(data)
        return

    click.echo(f"Updated  {schedule_id}  next: {data.get('nextExecution') or '-'}")


@schedule.command("delete")
@click.argument("schedule_id")
@click.pass_obj
def schedule_delete(obj: dict, schedule_id: str) -> None:
    """Delete a schedule."""
    with _client(obj["url"]) as c:
        resp = c.delete(f"/schedules/{schedule_id}")
    _check(resp)
    click.echo(f"Deleted  {schedule_id}")


def _set_enabled(obj: dict, schedule_id: str, enabled: bool) -> dict:
    with _client(obj["url"]) as c:
        resp = c.get(f"/schedules/{schedule_id}")
        _check(resp)
        current = resp.json()
        body = {k: current[k] for k in _REQUEST_FIELDS if current.get(k) is not None}
        body["enabled"] = enabled
        resp = c.put(f"/schedules/{schedule_id}", json=body)
    _check(resp)
    return resp.json()


@schedule.command("enable")
@click.argument("schedule_id")
@click.pass_obj
def schedule_enable(obj: dict, schedule_id: str) -> None:
    """Enable a schedule."""
    _set_enabled(obj, schedule_id, True)
    click.echo(f"Enabled  {schedule_id}")


@schedule.command("disable")
@click.argument("schedule_id")
@click.pass_obj
def schedule_disable(obj: dict, schedule_id: str) -> None:
    """Disable a schedule (it stays registered but stops firing)."""
    _set_enabled(obj, schedule_id, False)
    click.echo(f"Disabled  {schedule_id}")


# ── event ────────────────────────────────────────────────────────────────────


@cli.group("event")
def event() -> None:
    """Trigger events and inspect their history."""


@event.command("trigger")
@click.argument("event_type")
@click.option("--tenant", required=True, help="Tenant id.")
@click.option("--param", "-p", "params", multiple=True, metavar="KEY=VALUE",
              help="Event parameter (repeatable).")
@click.option("--now", "process_now", is_flag=True, help="Process synchronously.")
@click.pass_obj
def event_trigger(obj: dict, event_type: str, tenant: str,
                  params: tuple[str, ...], process_now: bool) -> None:
    """Publish a custom compliance event."""
    body = {
        "eventType": event_type,
        "tenantId": tenant,
        "parameters": _parse_params(params),
        "triggeredBy": "cli",
        "processImmediately": process_now,
    }
    with _client(obj["url"]) as c:
        resp = c.post("/events/trigger", json=body)
    _check(resp)
    data = resp.json()

    if obj["json_output"]:
        _emit_json(data)
        return

    status = data.get("status", "?")
    click.echo(f"Triggered  {data['eventId']}  [{status}]")


@event.command("history")
@click.option("--tenant", help="Filter by tenant id.")
@click.option("--type", "event_type", help="Filter by event type.")
@click.option("--limit", default=50, show_default=True, type=click.IntRange(1, 100))
@click.pass_obj
def event_history(obj: dict, tenant: str | None, event_type: str | None, limit: int) -> None:
    """Show processed events, newest first."""
    params: dict[str, Any] = {"limit": limit}
    if tenant:
        params["tenantId"] = tenant
    if event_type:
        params["eventType"] = event_type
    with _client(obj["url"]) as c:
        resp = c.get("/events/history", params=params)
    _check(resp)
    data = resp.json()

    if obj["json_output"]:
        _emit_json(data)
        return

    rows = data.get("events", [])
    if not rows:
        click.echo("No events found.")
        return

    table = Table(box=box.SIMPLE)
    table.add_column("Event ID", style="cyan")
    table.add_column("Type")
    table.add_column("Tenant")
    table.add_column("Status")
    table.add_column("Triggered")
    table.add_column("Error")
    for row in rows:
        status = row.get("status", "?")
        err = (row.get("error") or "")[:60]
        table.add_row(
            row["eventId"],
            row.get("eventType", ""),
            row.get("tenantId", ""),
            f"[{_color(status)}]{status}[/]",
            row.get("triggeredAt", ""),
            f"[red]{err}[/]" if err else "",
        )
    console.print(table)


if __name__ == "__main__":
    cli()
