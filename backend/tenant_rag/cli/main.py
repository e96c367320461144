"""CLI entrypoint for Tenant RAG."""

from __future__ import annotations

import json
import mimetypes
import os
from pathlib import Path
from typing import Optional

import requests
import typer

app = typer.Typer(name="tenant-rag", help="Tenant RAG command-line interface")
sources_app = typer.Typer(name="sources", help="Manage knowledge sources")
qa_app = typer.Typer(name="qa", help="Manage manual Q&A overrides")
app.add_typer(sources_app, name="sources")
app.add_typer(qa_app, name="qa")

DEFAULT_HOST = "http://127.0.0.1:8000"

HostOption = typer.Option(None, "--host", help="Override backend host")
TenantOption = typer.Option(..., "--tenant", "-t", envvar="TRAG_TENANT", help="Tenant identifier")


def _resolve_host(override: Optional[str]) -> str:
    if override:
        return override.rstrip("/")
    env_host = os.environ.get("TRAG_HOST")
    if env_host:
        return env_host.rstrip("/")
    return DEFAULT_HOST


def _request(method: str, path: str, host: Optional[str] = None, **kwargs) -> requests.Response:
    url = f"{_resolve_host(host)}{path}"
    try:
        resp = requests.request(method, url, timeout=120, **kwargs)
    except requests.RequestException as exc:
        typer.echo(f"Could not reach {url}: {exc}", err=True)
        raise typer.Exit(code=1)
    if not resp.ok:
        try:
            detail = resp.json().get("detail", resp.text)
        except ValueError:
            detail = resp.text
        typer.echo(f"Request failed ({resp.status_code}): {detail}", err=True)
        raise typer.Exit(code=1)
    return resp


def _echo(resp: requests.Response) -> None:
    typer.echo(json.dumps(resp.json(), indent=2))


@app.command()
def chat(
    message: str = typer.Argument(..., help="Message to answer"),
    tenant: str = TenantOption,
    host: Optional[str] = HostOption,
) -> None:
    """Ask the tenant's chatbot a question."""
    resp = _request("POST", f"/tenants/{tenant}/chat", host=host, json={"message": message})
    payload = resp.json()
    typer.echo(payload["answer"])
    typer.echo(f"[{payload['origin']}] charged {payload['tokens_charged']} tokens, balance {payload['balance']}", err=True)


@app.command()
def balance(tenant: str = TenantOption, host: Optional[str] = HostOption) -> None:
    """Show the token balance."""
    _echo(_request("GET", f"/tenants/{tenant}/balance", host=host))


@app.command()
def recharge(
    tokens: Optional[int] = typer.Option(None, "--tokens", help="Tokens to credit"),
    amount: Optional[int] = typer.Option(None, "--amount", help="Payment amount, converted with bonus tiers"),
    tenant: str = TenantOption,
    host: Optional[str] = HostOption,
) -> None:
    """Credit tokens to a tenant."""
    if (tokens is None) == (amount is None):
        raise typer.BadParameter("Pass exactly one of --tokens or --amount")
    body = {"tokens": tokens} if tokens is not None else {"amount": amount}
    _echo(_request("POST", f"/tenants/{tenant}/recharge", host=host, json=body))


@app.command()
def usage(
    limit: int = typer.Option(20, "--limit", help="Number of events to show"),
    tenant: str = TenantOption,
    host: Optional[str] = HostOption,
) -> None:
    """Show recent deductions and recharges."""
    _echo(_request("GET", f"/tenants/{tenant}/usage", host=host, params={"limit": limit}))


@sources_app.command("list")
def list_sources(tenant: str = TenantOption, host: Optional[str] = HostOption) -> None:
    """List the tenant's sources."""
    _echo(_request("GET", f"/tenants/{tenant}/sources", host=host))


@sources_app.command("upload")
def upload(
    path: Path = typer.Argument(..., exists=True, dir_okay=False, readable=True, help="File to index"),
    tenant: str = TenantOption,
    host: Optional[str] = HostOption,
) -> None:
    """Upload and index a pdf, docx, txt or md file."""
    content_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
    with path.open("rb") as fh:
        resp = _request(
            "POST",
            f"/tenants/{tenant}/sources/file",
            host=host,
            files={"file": (path.name, fh, content_type)},
        )
    _echo(resp)


@sources_app.command("add-website")
def add_website(
    url: str = typer.Argument(..., help="Page URL"),
    tenant: str = TenantOption,
    host: Optional[str] = HostOption,
) -> None:
    """Fetch and index a single web page."""
    _echo(_request("POST", f"/tenants/{tenant}/sources/website", host=host, json={"url": url}))


@sources_app.command("remove")
def remove_source(
    source_id: str = typer.Argument(..., help="Source identifier"),
    tenant: str = TenantOption,
    host: Optional[str] = HostOption,
) -> None:
    """Remove a source and its indexed chunks."""
    _echo(_request("DELETE", f"/tenants/{tenant}/sources/{source_id}", host=host))


@qa_app.command("list")
def list_qa(tenant: str = TenantOption, host: Optional[str] = HostOption) -> None:
    """List manual Q&A entries."""
    _echo(_request("GET", f"/tenants/{tenant}/qa", host=host))


@qa_app.command("add")
def add_qa(
    question: str = typer.Argument(..., help="Question, matched case-insensitively"),
    answer: str = typer.Argument(..., help="Answer returned verbatim"),
    category: Optional[str] = typer.Option(None, "--category", help="Category label"),
    tenant: str = TenantOption,
    host: Optional[str] = HostOption,
) -> None:
    """Add a manual Q&A override."""
    body = {"question": question, "answer": answer, "category": category}
    _echo(_request("POST", f"/tenants/{tenant}/qa", host=host, json=body))


@qa_app.command("remove")
def remove_qa(
    entry_id: str = typer.Argument(..., help="Q&A entry identifier"),
    tenant: str = TenantOption,
    host: Optional[str] = HostOption,
) -> None:
    """Delete a manual Q&A override."""
    _echo(_request("DELETE", f"/tenants/{tenant}/qa/{entry_id}", host=host))


if __name__ == "__main__":
    app()
