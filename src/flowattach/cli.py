from __future__ import annotations

import argparse
import asyncio
import socket
import sys
from pathlib import Path
from typing import TYPE_CHECKING

import uvicorn
from rich.live import Live
from rich.table import Table

from flowattach.client.files import resolve_inputs
from flowattach.client.orchestrator import TransferOrchestrator
from flowattach.client.outputs import OutputBinding
from flowattach.client.resolver import JsonFileStore, PolicyResolver
from flowattach.client.store import FileStateStore
from flowattach.config import DEFAULT_TIMEOUT, DisplayMode, FlowConfig, OrchestratorSettings
from flowattach.errors import ConfigurationMissing, FlowAttachError, ValidationRejected
from flowattach.log import (
    console,
    make_file_progress,
    make_overall_progress,
    setup_logging,
)
from flowattach.models import FileStatus, PendingFile, Policy
from flowattach.server.app import create_app
from flowattach.server.auth import TRIGGER_FLOWS, SignatureAuthProvider

if TYPE_CHECKING:
    from rich.progress import TaskID

DEFAULT_PORT = 1320
DEFAULT_STATE_FILE = "~/.flowattach/state.json"


def parse_target(target: str) -> str:
    """Parse a target string into a base URL.

    Accepts formats like:
      - host              → http://host:1320
      - host:port         → http://host:port
      - http://host:port  → http://host:port  (passed through)
      - https://host:port → https://host:port (passed through)
    """
    if target.startswith(("http://", "https://")):
        return target.rstrip("/")

    if ":" in target:
        host, port_str = target.rsplit(":", 1)
        try:
            port = int(port_str)
        except ValueError:
            console.print(f"[red]Invalid port in target: {target}")
            sys.exit(1)
        return f"http://{host}:{port}"
    return f"http://{target}:{DEFAULT_PORT}"


def build_flow_config(args: argparse.Namespace) -> FlowConfig:
    kwargs = {
        "upload_url": args.upload_url,
        "list_url": args.list_url,
        "delete_url": args.delete_url,
        "download_url": args.download_url,
        "container_path": args.container,
        "folder_name": args.folder,
        "record_uid": args.record,
        "auth_token": args.token,
        "timeout": args.timeout,
    }
    if args.base_url:
        return FlowConfig.from_base_url(parse_target(args.base_url), **kwargs)
    return FlowConfig(**kwargs)


def build_resolver(args: argparse.Namespace) -> PolicyResolver:
    bound = Policy(
        max_total_file_size_mb=args.max_total_mb,
        allowed_file_types=args.allowed_types,
    )
    store = JsonFileStore(Path(args.state_file).expanduser())
    return PolicyResolver(bound, store)


def _require_remote(config: FlowConfig) -> None:
    if not config.is_remote_configured:
        raise ConfigurationMissing(
            "Flow endpoints, --container and --record are required for this command."
        )


def build_auth(args: argparse.Namespace) -> SignatureAuthProvider | None:
    """Per-flow signatures from --flow-sig, falling back to the shared --token."""
    signatures: dict[str, str] = {}
    if args.token:
        signatures = dict.fromkeys(TRIGGER_FLOWS, args.token)
    for item in args.flow_sig or []:
        flow, sep, secret = item.partition("=")
        if not sep or not secret:
            console.print(f"[red]Invalid --flow-sig {item!r}; expected FLOW=SECRET")
            sys.exit(1)
        signatures[flow.strip()] = secret
    if not signatures:
        return None
    try:
        return SignatureAuthProvider(signatures)
    except ValueError as exc:
        console.print(f"[red]{exc}")
        sys.exit(1)


def cmd_serve(args: argparse.Namespace) -> None:
    setup_logging(args.verbose)

    # Fail fast if the port is already in use.
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        try:
            sock.bind((args.host, args.port))
        except OSError:
            console.print(
                f"[red]Port {args.port} is already in use. "
                "Is another flowattach backend running?"
            )
            sys.exit(1)

    auth = build_auth(args)
    app = create_app(
        storage_dir=args.storage_dir,
        auth=auth,
        wrap_download=args.wrap_download,
    )
    console.print(
        f"[bold green]flowattach reference flows[/] starting on "
        f"[cyan]{args.host}:{args.port}[/] (storage={args.storage_dir})"
    )
    uvicorn.run(app, host=args.host, port=args.port, log_level="warning")


class UploadProgressDisplay:
    """Rich rendering of per-file progress, fed by the file state store."""

    def __init__(self, total_files: int) -> None:
        self.overall = make_overall_progress()
        self.files = make_file_progress()
        self.overall_task = self.overall.add_task("Uploading", total=total_files)
        self.table = Table.grid()
        self.table.add_row(self.overall)
        self.table.add_row(self.files)
        self._task_ids: dict[str, TaskID] = {}
        self._finished: set[str] = set()

    def on_change(self, record: PendingFile) -> None:
        task_id = self._task_ids.get(record.name)
        if task_id is None:
            task_id = self.files.add_task(record.name, total=100)
            self._task_ids[record.name] = task_id
        self.files.update(task_id, completed=record.progress)

        if record.status.is_terminal and record.name not in self._finished:
            self._finished.add(record.name)
            color = "green" if record.status == FileStatus.COMPLETED else "red"
            self.files.update(task_id, description=f"[{color}]{record.name}")
            self.overall.advance(self.overall_task)


async def _upload(args: argparse.Namespace) -> int:
    try:
        files = resolve_inputs(args.paths, recursive=args.recursive)
    except (FileNotFoundError, FlowAttachError) as exc:
        console.print(f"[red]{exc}")
        return 1

    config = build_flow_config(args)
    resolver = build_resolver(args)
    outputs = OutputBinding()
    store = FileStateStore()

    settings = OrchestratorSettings(
        display_mode=DisplayMode.parse(args.mode),
        allow_multiple_files=not args.single,
    )

    async with TransferOrchestrator(
        config, resolver, settings=settings, store=store, on_event=outputs.handle
    ) as orchestrator:
        await orchestrator.start()
        for entry in orchestrator.add_files(files):
            if not entry.is_valid:
                console.print(f"[yellow]Skipping {entry.name}: {entry.error}")

        pending = store.pending_valid()
        if not pending:
            raise ValidationRejected("No files to upload.")

        mode = "flows" if config.is_remote_configured else "local JSON mode"
        console.print(f"Processing [bold]{len(pending)}[/] file(s) via [cyan]{mode}[/]")

        display = UploadProgressDisplay(len(pending))
        store.listener = display.on_change
        with Live(display.table, console=console, refresh_per_second=10):
            results = await orchestrator.upload_all()

    if args.json_out:
        Path(args.json_out).write_text(outputs.files_json, encoding="utf-8")
        console.print(f"Wrote files JSON to [cyan]{args.json_out}")

    ok = sum(1 for r in results if r.success)
    fail = len(results) - ok
    if fail:
        console.print(f"\n[green]{ok} succeeded[/], [red]{fail} failed[/]")
        for r in results:
            if not r.success:
                console.print(f"  [red]- {r.file_name}: {r.error or 'unknown'}")
        return 1
    console.print(f"\n[green]All {ok} file(s) processed successfully.")
    return 0


async def _list(args: argparse.Namespace) -> int:
    config = build_flow_config(args)
    _require_remote(config)
    async with TransferOrchestrator(config, build_resolver(args)) as orchestrator:
        files = await orchestrator.client.list_files(config.folder_path)

    if not files:
        console.print("No files found.")
        return 0
    table = Table("Name", "Size", "Last modified", "URL")
    for f in files:
        modified = f.last_modified.isoformat() if f.last_modified else ""
        table.add_row(f.name, str(f.size), modified, f.url)
    console.print(table)
    return 0


async def _delete(args: argparse.Namespace) -> int:
    config = build_flow_config(args)
    _require_remote(config)
    async with TransferOrchestrator(config, build_resolver(args)) as orchestrator:
        await orchestrator.delete_existing(args.name)
    console.print(f"[green]Deleted {args.name}")
    return 0


async def _download(args: argparse.Namespace) -> int:
    config = build_flow_config(args)
    async with TransferOrchestrator(
        config, build_resolver(args), download_dir=args.output_dir
    ) as orchestrator:
        await orchestrator.load_existing()
        result = await orchestrator.view_existing(args.name)
    target = result.path or result.url
    console.print(f"[green]{result.file_name}[/] → [cyan]{target}")
    return 0


def _run(handler, args: argparse.Namespace) -> None:
    setup_logging(args.verbose)
    try:
        code = asyncio.run(handler(args))
    except FlowAttachError as exc:
        console.print(f"[red]{exc}")
        sys.exit(1)
    sys.exit(code)


def cmd_upload(args: argparse.Namespace) -> None:
    _run(_upload, args)


def cmd_list(args: argparse.Namespace) -> None:
    _run(_list, args)


def cmd_delete(args: argparse.Namespace) -> None:
    _run(_delete, args)


def cmd_download(args: argparse.Namespace) -> None:
    _run(_download, args)


def cmd_config(args: argparse.Namespace) -> None:
    resolver = build_resolver(args)
    try:
        if args.action == "set":
            resolver.set_override(
                max_total_file_size_mb=args.set_max_total_mb,
                allowed_file_types=args.set_allowed_types,
            )
        elif args.action == "reset":
            resolver.reset()
    except FlowAttachError as exc:
        console.print(f"[red]{exc}")
        sys.exit(1)

    policy = resolver.policy
    console.print(
        f"Maximum total size: [bold]{policy.max_total_file_size_mb} MB[/] "
        f"(original: {resolver.bound.max_total_file_size_mb} MB)"
    )
    console.print(
        f"Allowed file types: [bold]{policy.allowed_file_types}[/] "
        f"(original: {resolver.bound.allowed_file_types})"
    )


def _client_options() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--base-url", help="Base of the /flows/* endpoints (host[:port] or URL)")
    common.add_argument("--upload-url", help="Upload flow trigger URL")
    common.add_argument("--list-url", help="List flow trigger URL")
    common.add_argument("--delete-url", help="Delete flow trigger URL")
    common.add_argument("--download-url", help="Download flow trigger URL")
    common.add_argument("--container", help="Container path in the object store")
    common.add_argument("--folder", help="Folder name inside the container")
    common.add_argument("--record", help="Record identity the files belong to")
    common.add_argument("--token", help="Bearer token sent to the flows")
    common.add_argument(
        "--timeout",
        type=float,
        default=DEFAULT_TIMEOUT,
        help=f"Per-call timeout in seconds (default: {DEFAULT_TIMEOUT:g})",
    )
    _policy_options(common)
    return common


def _policy_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--max-total-mb",
        type=int,
        default=20,
        help="Bound maximum total size in MB (default: 20)",
    )
    parser.add_argument(
        "--allowed-types",
        default="*",
        help="Bound allow-list, e.g. '.pdf;.docx' or 'image/*' (default: *)",
    )
    parser.add_argument(
        "--state-file",
        default=DEFAULT_STATE_FILE,
        help=f"Where the policy override is persisted (default: {DEFAULT_STATE_FILE})",
    )


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="flowattach",
        description="Attach files to records through flow-triggered object storage",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command", required=True)
    common = _client_options()

    # --- serve ---
    sp = sub.add_parser("serve", help="Start the reference flow backend")
    sp.add_argument("--host", default="127.0.0.1", help="Bind address")
    sp.add_argument("--port", type=int, default=DEFAULT_PORT, help="Listen port")
    sp.add_argument(
        "--storage-dir",
        default="./flow-storage",
        help="Directory used as the object store",
    )
    sp.add_argument("--token", help="Signature accepted by every flow")
    sp.add_argument(
        "--flow-sig",
        action="append",
        metavar="FLOW=SECRET",
        help="Signature for one flow (upload, list, delete, download); repeatable",
    )
    sp.add_argument(
        "--wrap-download",
        action="store_true",
        help="Wrap download payloads under a 'body' key",
    )
    sp.set_defaults(func=cmd_serve)

    # --- upload ---
    up = sub.add_parser("upload", parents=[common], help="Upload files")
    up.add_argument("paths", nargs="+", help="File or directory paths")
    up.add_argument("--recursive", "-r", action="store_true", help="Recurse into directories")
    up.add_argument("--json-out", help="Write the reported files JSON to this path")
    up.add_argument(
        "--mode",
        default="edit",
        help="Display mode: edit, disabled, view, admin or 0-3 (default: edit)",
    )
    up.add_argument("--single", action="store_true", help="Accept only the first file")
    up.set_defaults(func=cmd_upload)

    # --- list ---
    ls = sub.add_parser("list", parents=[common], help="List files stored for a record")
    ls.set_defaults(func=cmd_list)

    # --- delete ---
    dp = sub.add_parser("delete", parents=[common], help="Delete a stored file")
    dp.add_argument("name", help="File name")
    dp.set_defaults(func=cmd_delete)

    # --- download ---
    dl = sub.add_parser("download", parents=[common], help="Download or open a stored file")
    dl.add_argument("name", help="File name")
    dl.add_argument("--output-dir", default=".", help="Where downloaded files are written")
    dl.set_defaults(func=cmd_download)

    # --- config ---
    cp = sub.add_parser("config", help="Show or change the policy override")
    cp.add_argument("action", choices=["show", "set", "reset"])
    cp.add_argument("--set-max-total-mb", type=int, help="Override maximum total size (MB)")
    cp.add_argument("--set-allowed-types", help="Override the allow-list")
    _policy_options(cp)
    cp.set_defaults(func=cmd_config)

    args = parser.parse_args()
    args.func(args)
