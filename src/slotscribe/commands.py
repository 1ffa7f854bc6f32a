"""
SlotScribe CLI commands: verifiable audit traces for Solana agents.

Commands:
  slotscribe verify       - Verify a transaction's memo against its stored trace
  slotscribe check        - Local integrity check of a trace file (no chain access)
  slotscribe show         - Print a stored trace
  slotscribe list         - List stored traces, most recent first
  slotscribe ingest       - Validate a trace file and add it to the store
  slotscribe memo encode  - Build the memo text for a payload hash
  slotscribe memo decode  - Extract the payload hash from memo text
  slotscribe version      - Show version info

Exit codes: 0 pass, 1 error, 2 verification failed / tampered, 3 bad input.
"""

import asyncio
import json
import logging
from typing import Any, Dict, Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

console = Console()

slotscribe_app = typer.Typer(
    name="slotscribe",
    help="Verifiable audit traces for Solana agents",
    no_args_is_help=True,
)


def _output_json(data: Dict[str, Any], exit_code: Optional[int] = None) -> None:
    """Print structured JSON to stdout and exit.

    Exit codes:
    - 0: success (status == "ok")
    - 1: error (status == "error")
    - 2: verification failed (status == "failed")
    - 3: bad input (invalid arguments, missing files)

    Can be overridden with explicit exit_code parameter.
    """
    print(json.dumps(data, indent=2, default=str))
    if exit_code is not None:
        raise typer.Exit(exit_code)
    status = data.get("status", "ok")
    if status == "ok":
        raise typer.Exit(0)
    elif status == "failed":
        raise typer.Exit(2)
    else:
        raise typer.Exit(1)


def _bad_input(command: str, message: str, output_json: bool) -> None:
    if output_json:
        _output_json({"command": command, "status": "error", "error": message}, exit_code=3)
    console.print(f"[red]Error:[/] {message}")
    raise typer.Exit(3)


def _internal_error(command: str, exc: Exception, output_json: bool) -> None:
    if output_json:
        _output_json({"command": command, "status": "error", "error": str(exc)})
    console.print(f"[red]Error:[/] {exc}")
    raise typer.Exit(1)


def _open_store(traces_dir: Optional[str]):
    from slotscribe.store import FileTraceStore, get_default_store

    if traces_dir:
        return FileTraceStore(traces_dir)
    return get_default_store()


def _load_json_file(command: str, path: str, output_json: bool) -> Any:
    from pathlib import Path

    file_path = Path(path)
    if not file_path.exists():
        _bad_input(command, f"{path} not found", output_json)
    try:
        return json.loads(file_path.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        _bad_input(command, f"{path} is not valid JSON: {e}", output_json)


@slotscribe_app.callback()
def main_callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log progress to stderr"),
):
    """Verifiable audit traces for Solana agents."""
    if verbose:
        from rich.logging import RichHandler

        logging.basicConfig(
            level=logging.DEBUG,
            format="%(message)s",
            datefmt="[%X]",
            handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=True)],
        )


@slotscribe_app.command("verify")
def verify_cmd(
    signature: Optional[str] = typer.Option(None, "--sig", "-s", help="Transaction signature"),
    payload_hash: Optional[str] = typer.Option(None, "--hash", help="Trace payload hash"),
    cluster: Optional[str] = typer.Option(
        None, "--cluster", "-c",
        help="mainnet-beta | devnet | testnet | localnet (default: $SLOTSCRIBE_CLUSTER or mainnet-beta)",
    ),
    rpc_url: Optional[str] = typer.Option(None, "--rpc-url", help="Override the cluster RPC endpoint"),
    traces_dir: Optional[str] = typer.Option(None, "--traces-dir", help="Trace store directory"),
    output_json: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Verify an on-chain memo commitment against the stored trace."""
    from slotscribe.config import default_cluster
    from slotscribe.errors import InternalError, InvalidClusterError
    from slotscribe.verifier import Verifier, VerifyRequest

    try:
        request = VerifyRequest(
            cluster=cluster or default_cluster(),
            signature=signature,
            hash=payload_hash,
            rpc_url=rpc_url,
        )
    except (InvalidClusterError, ValueError) as e:
        _bad_input("verify", str(e), output_json)

    verifier = Verifier(_open_store(traces_dir))
    try:
        response = asyncio.run(verifier.verify(request))
    except InternalError as e:
        _internal_error("verify", e, output_json)

    result = response.result
    if output_json:
        _output_json({
            "command": "verify",
            "status": "ok" if result.ok else "failed",
            "cluster": request.cluster.value,
            "signature": request.signature,
            "cached": response.cached,
            **response.to_dict(),
        })

    if result.ok:
        trace = response.trace
        sig = request.signature or (trace.on_chain.signature if trace and trace.on_chain else "-")
        console.print()
        console.print(Panel.fit(
            f"[bold green]VERIFIED[/]\n\n"
            f"Signature:  {sig}\n"
            f"Hash:       {result.expected_hash or response.on_chain_hash}\n"
            f"Slot:       {response.slot if response.slot is not None else '-'}\n"
            f"Cache:      {'hit' if response.cached else 'miss'}",
            title="slotscribe verify",
        ))
        console.print()
        raise typer.Exit(0)

    console.print()
    console.print(Panel.fit(
        "[bold red]NOT VERIFIED[/]\n\n"
        f"Expected:   {result.expected_hash or '-'}\n"
        f"Computed:   {result.computed_hash or '-'}",
        title="slotscribe verify",
    ))
    for reason in result.reasons:
        console.print(f"  [red]{reason}[/]")
    console.print()
    raise typer.Exit(2)


@slotscribe_app.command("check")
def check_cmd(
    path: str = typer.Argument(..., help="Path to a trace JSON file"),
    output_json: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Check a trace file's internal integrity (payload vs payloadHash)."""
    from pydantic import ValidationError

    from slotscribe.errors import CanonicalizationError
    from slotscribe.integrity import validate_integrity
    from slotscribe.models import Trace

    data = _load_json_file("check", path, output_json)
    try:
        trace = Trace.from_dict(data)
        result = validate_integrity(trace)
    except (ValidationError, CanonicalizationError, TypeError, ValueError) as e:
        _bad_input("check", f"Invalid trace: {e}", output_json)

    if output_json:
        _output_json({
            "command": "check",
            "status": "ok" if result.ok else "failed",
            "path": path,
            "payloadHash": trace.payload_hash,
            **result.to_dict(),
        })

    if result.ok:
        console.print(f"[green]INTACT[/] {path}")
        console.print(f"  payloadHash: {trace.payload_hash}")
        raise typer.Exit(0)

    console.print(f"[red]TAMPERED[/] {path}")
    console.print(f"  {result.error}")
    console.print(f"  claimed:  {trace.payload_hash}")
    console.print(f"  computed: {result.computed_hash}")
    raise typer.Exit(2)


@slotscribe_app.command("show")
def show_cmd(
    payload_hash: str = typer.Argument(..., help="Trace payload hash"),
    traces_dir: Optional[str] = typer.Option(None, "--traces-dir", help="Trace store directory"),
    output_json: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Print a stored trace."""
    from slotscribe.digest import is_hex_digest
    from slotscribe.errors import StoreError

    if not is_hex_digest(payload_hash):
        _bad_input("show", f"Invalid hash: {payload_hash}", output_json)

    store = _open_store(traces_dir)
    try:
        trace = asyncio.run(store.get(payload_hash))
    except StoreError as e:
        _internal_error("show", e, output_json)

    if trace is None:
        if output_json:
            _output_json({"command": "show", "status": "error", "error": "trace not found", "hash": payload_hash})
        console.print(f"[red]Error:[/] No trace stored for {payload_hash}")
        raise typer.Exit(1)

    if output_json:
        _output_json({"command": "show", "status": "ok", "trace": trace.to_dict()})

    payload = trace.payload
    summary = payload.get("txSummary") or {}
    console.print()
    console.print(Panel.fit(
        f"[bold]{payload.get('intent', '')}[/]\n\n"
        f"Version:    {trace.version}\n"
        f"Created:    {trace.created_at or '-'}\n"
        f"Cluster:    {summary.get('cluster', '-')}\n"
        f"Type:       {summary.get('type', 'transfer')}\n"
        f"Signature:  {trace.on_chain.signature if trace.on_chain else '-'}\n"
        f"Verified:   {'yes' if trace.verified_result and trace.verified_result.ok else 'no'}",
        title=trace.payload_hash,
    ))
    steps = (payload.get("plan") or {}).get("steps") or []
    if steps:
        console.print("Plan:")
        for i, step in enumerate(steps, 1):
            console.print(f"  {i}. {step}")
    tool_calls = payload.get("toolCalls") or []
    if tool_calls:
        console.print("Tool calls:")
        for call in tool_calls:
            marker = "[red]x[/]" if call.get("error") else "[green]ok[/]"
            console.print(f"  {marker} {call.get('name')}")
    console.print()


@slotscribe_app.command("list")
def list_cmd(
    limit: int = typer.Option(20, "--limit", "-n", help="Maximum number of traces"),
    traces_dir: Optional[str] = typer.Option(None, "--traces-dir", help="Trace store directory"),
    output_json: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """List stored traces, most recent first."""
    from slotscribe.errors import StoreError

    if limit < 1:
        _bad_input("list", f"--limit must be positive, got {limit}", output_json)

    store = _open_store(traces_dir)
    try:
        entries = asyncio.run(store.list(limit))
    except StoreError as e:
        _internal_error("list", e, output_json)

    rows = []
    for payload_hash, trace in entries:
        rows.append({
            "hash": payload_hash,
            "version": trace.version,
            "createdAt": trace.created_at,
            "intent": trace.payload.get("intent"),
            "cluster": (trace.payload.get("txSummary") or {}).get("cluster", "unknown"),
            "signature": trace.on_chain.signature if trace.on_chain else None,
        })

    if output_json:
        _output_json({"command": "list", "status": "ok", "count": len(rows), "traces": rows})

    if not rows:
        console.print(f"No traces in {getattr(store, 'base_dir', 'store')}")
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("Hash", style="cyan")
    table.add_column("Version")
    table.add_column("Cluster")
    table.add_column("Created")
    table.add_column("Intent")
    for row in rows:
        table.add_row(
            row["hash"][:16] + "...",
            row["version"],
            row["cluster"],
            row["createdAt"] or "-",
            (row["intent"] or "")[:48],
        )
    console.print(table)


@slotscribe_app.command("ingest")
def ingest_cmd(
    path: str = typer.Argument(..., help="Path to a trace JSON file"),
    traces_dir: Optional[str] = typer.Option(None, "--traces-dir", help="Trace store directory"),
    output_json: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Validate a trace file (shape + hash) and add it to the store."""
    from slotscribe.errors import StoreError
    from slotscribe.ingest import E_HASH_FAILED, ingest_trace

    data = _load_json_file("ingest", path, output_json)
    store = _open_store(traces_dir)
    try:
        result = asyncio.run(ingest_trace(store, data))
    except StoreError as e:
        _internal_error("ingest", e, output_json)

    if result.accepted:
        status = "ok"
        exit_code = 0
    elif result.error == E_HASH_FAILED:
        status = "failed"
        exit_code = 2
    else:
        status = "error"
        exit_code = 3

    if output_json:
        _output_json({"command": "ingest", "status": status, **result.to_dict()}, exit_code=exit_code)

    if result.accepted:
        label = "Already stored" if result.duplicate else "Stored"
        console.print(f"[green]{label}[/] {result.hash}")
    else:
        console.print(f"[red]{result.error}:[/] {result.message}")
        for detail in result.details[:10]:
            console.print(f"  {detail}")
    raise typer.Exit(exit_code)


memo_app = typer.Typer(
    name="memo",
    help="Encode and decode on-chain memo commitments",
    no_args_is_help=True,
)
slotscribe_app.add_typer(memo_app, name="memo")


@memo_app.command("encode")
def memo_encode_cmd(
    payload_hash: str = typer.Argument(..., help="64-char hex payload hash"),
    output_json: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Print the memo text that commits to a payload hash."""
    from slotscribe.memo import encode_memo

    try:
        memo = encode_memo(payload_hash)
    except ValueError as e:
        _bad_input("memo encode", str(e), output_json)

    if output_json:
        _output_json({"command": "memo encode", "status": "ok", "memo": memo})
    print(memo)


@memo_app.command("decode")
def memo_decode_cmd(
    text: str = typer.Argument(..., help="Memo text"),
    output_json: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Extract the payload hash from memo text."""
    from slotscribe.memo import decode_memo

    decoded = decode_memo(text)
    if output_json:
        _output_json({
            "command": "memo decode",
            "status": "ok" if decoded.payload_hash else "failed",
            "raw": decoded.raw,
            "payloadHash": decoded.payload_hash,
        })

    if decoded.payload_hash is None:
        console.print(f"[yellow]Not a SlotScribe memo:[/] {decoded.raw}")
        raise typer.Exit(2)
    print(decoded.payload_hash)


@slotscribe_app.command("version")
def show_version(
    output_json: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Show SlotScribe version and configuration."""
    from slotscribe import __version__
    from slotscribe.config import default_base_url, default_cluster, default_traces_dir

    if output_json:
        _output_json({
            "command": "version",
            "status": "ok",
            "version": __version__,
            "traces_dir": str(default_traces_dir()),
            "cluster": default_cluster().value,
            "base_url": default_base_url(),
        })

    console.print(f"[bold]SlotScribe {__version__}[/]")
    console.print("Verifiable audit traces for Solana agents")
    console.print()
    console.print(f"Traces:   {default_traces_dir()}")
    console.print(f"Cluster:  {default_cluster().value}")
    console.print(f"Service:  {default_base_url()}")
