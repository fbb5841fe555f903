"""CLI entrypoint for PrepMint."""

from __future__ import annotations

import asyncio
import json
import os
from pathlib import Path
from typing import List, Optional

import requests
import typer

from prepmint.client import ApiClient
from prepmint.core.config import get_settings
from prepmint.evaluation.validation import SelectedFile
from prepmint.evaluation.workflow import EvaluationWorkflow, WorkflowState
from prepmint.gamify.xp import calculate_level, create_awarder, level_progress, xp_for_next_level
from prepmint.store.backends import create_backend

app = typer.Typer(name="pmnt", help="PrepMint command-line interface")
records_app = typer.Typer(name="records", help="Browse and edit backend sources")
app.add_typer(records_app, name="records")


def _resolve_host(override: Optional[str]) -> str:
    if override:
        return override.rstrip("/")
    env_host = os.environ.get("PMNT_HOST")
    if env_host:
        return env_host.rstrip("/")
    return get_settings().api_base_url


def _request(
    method: str,
    path: str,
    host: Optional[str] = None,
    acting_as: Optional[str] = None,
    **kwargs,
) -> requests.Response:
    base = _resolve_host(host)
    url = f"{base}{path}"
    acting_as = acting_as or os.environ.get("PMNT_USER")
    if acting_as:
        kwargs["headers"] = {**kwargs.get("headers", {}), "X-User-Id": acting_as}
    try:
        resp = requests.request(method, url, timeout=get_settings().http_timeout_seconds, **kwargs)
    except requests.RequestException as exc:
        typer.echo(f"Request failed: {exc}", err=True)
        raise typer.Exit(code=1)
    if not resp.ok:
        try:
            detail = resp.json().get("message", resp.text)
        except ValueError:
            detail = resp.text
        typer.echo(f"Request failed ({resp.status_code}): {detail}", err=True)
        raise typer.Exit(code=1)
    return resp


@records_app.command("list")
def list_records(
    source: str = typer.Argument(..., help="Table or collection name"),
    page_size: Optional[int] = typer.Option(None, "--page-size", help="Records per page"),
    order_by: str = typer.Option("created_at", "--order-by", help="Field to sort by"),
    direction: str = typer.Option("desc", "--direction", help="asc or desc"),
    search: Optional[str] = typer.Option(None, "--search", help="Case-insensitive search term"),
    field: List[str] = typer.Option([], "--field", help="Field searched by --search (repeatable)"),
    filters: List[str] = typer.Option([], "--filter", help="field:op:value filter (repeatable)"),
    cursor: Optional[str] = typer.Option(None, "--cursor", help="Resume from a previous next_cursor"),
    host: Optional[str] = typer.Option(None, "--host", help="Override API host"),
) -> None:
    """Print one page of a source."""
    params: list[tuple[str, object]] = [("order_by", order_by), ("direction", direction)]
    if page_size:
        params.append(("page_size", page_size))
    if search:
        params.append(("search", search))
    params.extend(("search_fields", name) for name in field)
    params.extend(("filter", expression) for expression in filters)
    if cursor:
        params.append(("cursor", cursor))
    resp = _request("GET", f"/records/{source}", host=host, params=params)
    typer.echo(json.dumps(resp.json(), indent=2))


@records_app.command("add")
def add_record(
    source: str = typer.Argument(..., help="Table or collection name"),
    data: str = typer.Option(..., "--data", help="Record fields as a JSON object"),
    acting_as: Optional[str] = typer.Option(None, "--as", help="Caller user id (defaults to PMNT_USER)"),
    host: Optional[str] = typer.Option(None, "--host", help="Override API host"),
) -> None:
    """Insert a record."""
    try:
        fields = json.loads(data)
    except ValueError as exc:
        typer.echo(f"--data is not valid JSON: {exc}", err=True)
        raise typer.Exit(code=2)
    resp = _request("POST", f"/records/{source}", host=host, acting_as=acting_as, json=fields)
    typer.echo(json.dumps(resp.json(), indent=2))


@records_app.command("delete")
def delete_records(
    source: str = typer.Argument(..., help="Table or collection name"),
    ids: List[str] = typer.Argument(..., help="Record ids"),
    acting_as: Optional[str] = typer.Option(None, "--as", help="Caller user id (defaults to PMNT_USER)"),
    host: Optional[str] = typer.Option(None, "--host", help="Override API host"),
) -> None:
    """Delete one or more records; reports per-id outcomes."""
    if len(ids) == 1:
        _request("DELETE", f"/records/{source}/{ids[0]}", host=host, acting_as=acting_as)
        typer.echo(json.dumps({"status": "ok"}))
        return
    resp = _request("POST", f"/records/{source}/bulk-delete", host=host, acting_as=acting_as, json={"ids": ids})
    payload = resp.json()
    typer.echo(json.dumps(payload, indent=2))
    if payload.get("failed"):
        raise typer.Exit(code=1)


@app.command()
def evaluate(
    path: Path = typer.Argument(..., help="Answer sheet (PDF, JPG or PNG)"),
    user: str = typer.Option(..., "--user", help="Uploading user id"),
    test: Optional[str] = typer.Option(None, "--test", help="Test id the sheet answers"),
    award: bool = typer.Option(True, "--award/--no-award", help="Award XP when grading completes"),
    host: Optional[str] = typer.Option(None, "--host", help="Override API host"),
) -> None:
    """Upload an answer sheet and follow the evaluation to the end."""
    settings = get_settings()
    client = ApiClient(_resolve_host(host), timeout=settings.http_timeout_seconds, user_id=user)
    awarder = create_awarder(settings, backend=create_backend(settings), client=client) if award else None

    def _show(workflow: EvaluationWorkflow) -> None:
        progress = f" {workflow.progress:.0f}%" if workflow.progress is not None else ""
        typer.echo(f"{workflow.state.value}{progress}", err=True)

    workflow = EvaluationWorkflow.from_settings(settings, client, awarder, listener=_show)
    if not path.expanduser().is_file():
        typer.echo(f"No such file: {path}", err=True)
        raise typer.Exit(code=2)
    if not workflow.select_file(SelectedFile.from_path(path)):
        typer.echo(workflow.error or "File rejected", err=True)
        raise typer.Exit(code=1)

    async def _run() -> None:
        try:
            if await workflow.submit(user, test) is not None:
                await workflow.wait()
        finally:
            workflow.close()

    try:
        asyncio.run(_run())
    finally:
        client.close()
    if workflow.state is not WorkflowState.DONE:
        typer.echo(workflow.error or "Evaluation did not complete", err=True)
        raise typer.Exit(code=1)
    typer.echo(json.dumps({"jobId": workflow.job_id, "result": workflow.result}, indent=2))


@app.command()
def serve(
    bind: str = typer.Option("127.0.0.1", "--bind", help="Interface to listen on"),
    port: int = typer.Option(8000, "--port", help="Port to listen on"),
    reload: bool = typer.Option(False, "--reload", help="Restart on code changes"),
) -> None:
    """Run the API server."""
    import uvicorn

    uvicorn.run("prepmint.app:app", host=bind, port=port, reload=reload)


@app.command()
def level(xp: int = typer.Argument(..., help="Experience points")) -> None:
    """Show the level reached with a given XP total."""
    current = calculate_level(xp)
    typer.echo(
        json.dumps(
            {
                "xp": xp,
                "level": current,
                "next_level_xp": xp_for_next_level(current),
                "progress": round(level_progress(xp), 2),
            },
            indent=2,
        )
    )


if __name__ == "__main__":
    app()
