"""RadioStack command line.

Usage::

    python -m radiostack deploy azuracast -n main -i 340 --ip-suffix 140 -q 500G
    python -m radiostack list --json
    python -m radiostack update -p libretime
    python -m radiostack backup --all --mode compute
    python -m radiostack remove -i 340 --data
    python -m radiostack restore -i 340 pre-update
    python -m radiostack inventory validate

Exit code is 0 when every targeted station succeeded, 1 otherwise.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
from typing import Any, Awaitable, Callable

from radiostack import __version__
from radiostack.bulk import PURGE_CONFIRM_WORD, BulkReport
from radiostack.config import RadioStackConfig
from radiostack.errors import ConfirmationDeclined, RadioStackError
from radiostack.models import OperationOutcome
from radiostack.orchestrator import BACKUP_MODES, AutoConfirmer, ProvisionStep
from radiostack.stack import RadioStack

logger = logging.getLogger(__name__)

StackFactory = Callable[[RadioStackConfig | None], Awaitable[RadioStack]]


class PromptConfirmer:
    """Asks on the terminal; anything but y/yes is a no."""

    def confirm(self, prompt: str) -> bool:
        try:
            answer = input(f"{prompt} [y/N]: ")
        except EOFError:
            return False
        return answer.strip().lower() in ("y", "yes")


# ── Parser ────────────────────────────────────────────────────────


def _add_target(p: argparse.ArgumentParser, allow_bulk: bool = True):
    group = p.add_mutually_exclusive_group(required=True)
    group.add_argument("-i", "--id", type=int, dest="station_id", help="Station (container) ID")
    if allow_bulk:
        group.add_argument("-p", "--platform", help="All stations of a platform")
        group.add_argument("--all", action="store_true", help="All stations")
    return group


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="radiostack",
        description="Deploy and manage radio station containers on Proxmox",
    )
    parser.add_argument("--version", action="version", version=f"radiostack {__version__}")
    parser.add_argument("--config", help="Path to radiostack.json")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    # deploy
    deploy_p = sub.add_parser("deploy", help="Deploy a new station")
    deploy_p.add_argument("platform", help="azuracast | libretime")
    deploy_p.add_argument("-n", "--name", required=True, help="Station name (lowercase, dashes)")
    deploy_p.add_argument("-i", "--id", type=int, dest="station_id", help="Container ID (auto if omitted)")
    deploy_p.add_argument("-c", "--cores", type=int)
    deploy_p.add_argument("-m", "--memory", type=int, dest="memory_mb", help="Memory in MB")
    deploy_p.add_argument("-q", "--quota", help="Media storage quota (e.g. 500G)")
    deploy_p.add_argument("--ip-suffix", type=int, help="Last octet of the station address")
    deploy_p.add_argument("--version", dest="platform_version", help="Platform release")
    deploy_p.add_argument("--resume", action="store_true", help="Continue a partial deployment")
    deploy_p.add_argument("-y", "--yes", action="store_true", help="Do not ask for confirmation")

    # remove
    remove_p = sub.add_parser("remove", help="Remove station(s)")
    group = remove_p.add_mutually_exclusive_group(required=True)
    group.add_argument("-i", "--id", type=int, dest="station_id")
    group.add_argument("-p", "--platform")
    group.add_argument("--all", "--purge-all", action="store_true", dest="purge_all",
                       help="Remove every station (asks for DELETE)")
    remove_p.add_argument("--data", action="store_true", help="Also delete the media dataset")
    remove_p.add_argument("-f", "--force", "-y", "--yes", action="store_true", dest="force",
                          help="Skip confirmation prompts")

    # update / backup / status / restart
    update_p = sub.add_parser("update", help="Update the platform software")
    _add_target(update_p)

    backup_p = sub.add_parser("backup", help="Back up station(s)")
    backup_group = _add_target(backup_p)
    backup_group.add_argument("-l", "--list", nargs="?", const=0, type=int, dest="list_backups",
                              metavar="ID", help="List container backups (optionally for one station)")
    backup_p.add_argument("--mode", choices=BACKUP_MODES, default="full")

    status_p = sub.add_parser("status", help="Show station status")
    _add_target(status_p)
    status_p.add_argument("--probe", action="store_true", help="Check the web interface over HTTP")
    status_p.add_argument("--json", action="store_true")

    restart_p = sub.add_parser("restart", help="Restart station container(s)")
    _add_target(restart_p)

    # list / info / logs
    list_p = sub.add_parser("list", help="List stations in the inventory")
    list_p.add_argument("-p", "--platform")
    list_p.add_argument("--json", action="store_true")

    info_p = sub.add_parser("info", help="Detailed station information")
    _add_target(info_p, allow_bulk=False)
    info_p.add_argument("--json", action="store_true")

    logs_p = sub.add_parser("logs", help="Show platform logs")
    _add_target(logs_p, allow_bulk=False)
    logs_p.add_argument("-n", "--lines", type=int, default=100)
    logs_p.add_argument("-s", "--service", default="")

    set_status_p = sub.add_parser("set-status", help="Set a station's inventory status")
    _add_target(set_status_p, allow_bulk=False)
    set_status_p.add_argument("status", help="active | stopped | error | maintenance")

    # media volume
    resize_p = sub.add_parser("resize", help="Change a station's media quota")
    _add_target(resize_p, allow_bulk=False)
    resize_p.add_argument("quota", help="New quota (e.g. 1T)")

    restore_p = sub.add_parser("restore", help="Roll the media dataset back to a snapshot")
    _add_target(restore_p, allow_bulk=False)
    restore_p.add_argument("snapshot", help="Snapshot name (see info)")
    restore_p.add_argument("-f", "--force", "-y", "--yes", action="store_true", dest="force",
                           help="Skip the confirmation prompt")

    next_p = sub.add_parser("next-id", help="Next free container ID for a platform")
    next_p.add_argument("platform")

    # inventory
    inv_p = sub.add_parser("inventory", help="Inventory maintenance")
    inv_sub = inv_p.add_subparsers(dest="inventory_command", required=True)
    inv_sub.add_parser("validate", help="Check header, duplicates and orphans")
    inv_sub.add_parser("cleanup", help="Remove orphaned entries")
    export_p = inv_sub.add_parser("export", help="Export inventory as JSON")
    export_p.add_argument("path")
    inv_sub.add_parser("backups", help="List inventory backups")

    return parser


# ── Output helpers ────────────────────────────────────────────────


def _print_outcome(outcome: OperationOutcome) -> None:
    mark = "OK  " if outcome.success else "FAIL"
    line = f"  [{mark}] {outcome.station_id}  {outcome.operation}: {outcome.message}"
    if outcome.error_kind:
        line += f" ({outcome.error_kind})"
    print(line)


def _print_report(report: BulkReport) -> int:
    for outcome in report.outcomes:
        _print_outcome(outcome)
    print(
        f"{report.operation}: {len(report.outcomes)} station(s), "
        f"{report.succeeded} succeeded, {report.failed} failed"
    )
    return 0 if report.ok else 1


def _print_step(station_id: int, step: ProvisionStep) -> None:
    if step.status in ("running", "failed"):
        print(f"  [{step.status:7s}] {step.name}: {step.detail}")


# ── Commands ──────────────────────────────────────────────────────


async def _cmd_deploy(stack: RadioStack, args: argparse.Namespace) -> int:
    orch = stack.orchestrator
    spec = await orch.plan(
        args.platform,
        args.name,
        station_id=args.station_id,
        cores=args.cores,
        memory_mb=args.memory_mb,
        quota=args.quota,
        address_suffix=args.ip_suffix,
        version=args.platform_version,
    )
    print(f"Container ID:   {spec.id}")
    print(f"Station Name:   {spec.station_name}")
    print(f"Hostname:       {spec.hostname}")
    print(f"IP Address:     {spec.address}")
    print(f"CPU Cores:      {spec.cores}")
    print(f"Memory:         {spec.memory_mb}MB")
    print(f"Media Dataset:  {spec.dataset_path}")
    print(f"Media Quota:    {spec.storage_quota}")
    if not args.yes and not PromptConfirmer().confirm("Proceed with deployment?"):
        raise ConfirmationDeclined("Deployment cancelled")

    orch.on_progress(_print_step)
    result = await orch.provision(spec, resume=args.resume)
    _print_outcome(result.to_outcome())
    if result.success:
        print(f"Web interface: http://{spec.address}")
    return 0 if result.success else 1


async def _cmd_remove(stack: RadioStack, args: argparse.Namespace) -> int:
    confirmer = AutoConfirmer(True) if args.force else PromptConfirmer()
    if args.purge_all:
        print(f"This will remove ALL {stack.store.count()} station(s).")
        try:
            word = input(f"Type {PURGE_CONFIRM_WORD} to confirm: ").strip()
        except EOFError:
            word = ""
        report = await stack.bulk.purge_all(word, remove_data=args.data, confirmer=confirmer)
        return _print_report(report)
    if args.station_id is not None:
        result = await stack.orchestrator.teardown(
            args.station_id, remove_data=args.data, force=args.force, confirmer=confirmer
        )
        _print_outcome(result.to_outcome())
        return 0
    report = await stack.bulk.run(
        "remove",
        platform=args.platform,
        remove_data=args.data,
        force=args.force,
        confirmer=confirmer,
    )
    return _print_report(report)


async def _cmd_list_backups(stack: RadioStack, station_id: int | None) -> int:
    backups = await stack.orchestrator.list_backups(station_id)
    if not backups:
        print("No backups found.")
    for volid in backups:
        print(f"  {volid}")
    return 0


async def _run_targeted(
    stack: RadioStack,
    args: argparse.Namespace,
    operation: str,
    **kwargs: Any,
) -> BulkReport:
    if args.station_id is not None:
        stack.store.get(args.station_id)
        return await stack.bulk.run(operation, ids=[args.station_id], **kwargs)
    return await stack.bulk.run(operation, platform=None if args.all else args.platform, **kwargs)


async def _cmd_status(stack: RadioStack, args: argparse.Namespace) -> int:
    report = await _run_targeted(stack, args, "status", probe=args.probe)
    if args.json:
        print(json.dumps(report.to_dict(), indent=2))
        return 0 if report.ok else 1
    for outcome in report.outcomes:
        if not outcome.success:
            _print_outcome(outcome)
            continue
        d = outcome.details
        line = f"  {d['id']:<8} {d['hostname']:<28} {d['address']:<16} {d['status']:<12} {d['container']}"
        if "health" in d:
            line += f" ({d['health']})"
        if "web" in d:
            line += "  web: " + ("up" if d["web"]["reachable"] else "down")
        print(line)
    return 0 if report.ok else 1


async def _cmd_list(stack: RadioStack, args: argparse.Namespace) -> int:
    records = stack.store.list(args.platform)
    if args.json:
        print(json.dumps({"stations": [r.to_dict() for r in records]}, indent=2))
        return 0
    if not records:
        print("No stations found.")
        return 0
    print(f"  {'CTID':<8} {'Type':<10} {'Hostname':<28} {'IP':<16} {'Created':<11} Status")
    for r in records:
        print(
            f"  {r.id:<8} {r.platform.value:<10} {r.hostname:<28} {r.address:<16} "
            f"{r.created.isoformat():<11} {r.status.value}"
        )
    print(f"Total: {len(records)} station(s)")
    return 0


async def _cmd_info(stack: RadioStack, args: argparse.Namespace) -> int:
    details = await stack.orchestrator.info(args.station_id)
    if args.json:
        print(json.dumps(details, indent=2))
        return 0
    for key, value in details.items():
        if isinstance(value, dict):
            print(f"{key}:")
            for k, v in value.items():
                print(f"  {k}: {v}")
        elif isinstance(value, list):
            print(f"{key}: {', '.join(map(str, value)) or '-'}")
        else:
            print(f"{key}: {value}")
    return 0


async def _cmd_inventory(stack: RadioStack, args: argparse.Namespace) -> int:
    cmd = args.inventory_command
    if cmd == "validate":
        report = await stack.validate_inventory()
        if not report.header_ok:
            print(f"Invalid header: {report.header_found!r}")
        for station_id in report.duplicate_ids:
            print(f"Duplicate CTID: {station_id}")
        for row in report.malformed_rows:
            print(f"Malformed row: {row}")
        for station_id in report.orphaned_ids:
            print(f"Orphaned entry (container doesn't exist): CTID {station_id}")
        if report.ok and not report.orphaned_ids:
            print("Inventory validation passed")
            return 0
        return 1
    if cmd == "cleanup":
        removed = await stack.cleanup_inventory()
        print(f"Removed {len(removed)} orphaned entries" + (f": {removed}" if removed else ""))
        return 0
    if cmd == "export":
        path = stack.store.export_json(args.path)
        print(f"Inventory exported to: {path}")
        return 0
    if cmd == "backups":
        backups = stack.store.list_backups()
        if not backups:
            print("No backups found.")
        for path in backups:
            print(f"  {path.name}")
        return 0
    raise RadioStackError(f"Unknown inventory command: {cmd}")


async def run(stack: RadioStack, args: argparse.Namespace) -> int:
    """Dispatch a parsed command against *stack*; returns the exit code."""
    command = args.command
    if command == "deploy":
        return await _cmd_deploy(stack, args)
    if command == "remove":
        return await _cmd_remove(stack, args)
    if command == "update":
        return _print_report(await _run_targeted(stack, args, "update"))
    if command == "backup":
        if args.list_backups is not None:
            return await _cmd_list_backups(stack, args.list_backups or None)
        return _print_report(await _run_targeted(stack, args, "backup", mode=args.mode))
    if command == "restart":
        return _print_report(await _run_targeted(stack, args, "restart"))
    if command == "status":
        return await _cmd_status(stack, args)
    if command == "list":
        return await _cmd_list(stack, args)
    if command == "info":
        return await _cmd_info(stack, args)
    if command == "logs":
        print(await stack.orchestrator.logs(args.station_id, lines=args.lines, service=args.service))
        return 0
    if command == "set-status":
        record = await stack.orchestrator.set_status(args.station_id, args.status)
        print(f"Station {record.id} status: {record.status.value}")
        return 0
    if command == "resize":
        _print_outcome(await stack.orchestrator.resize(args.station_id, args.quota))
        return 0
    if command == "restore":
        confirmer = AutoConfirmer(True) if args.force else PromptConfirmer()
        outcome = await stack.orchestrator.restore(
            args.station_id, args.snapshot, force=args.force, confirmer=confirmer
        )
        _print_outcome(outcome)
        return 0
    if command == "next-id":
        print(await stack.orchestrator.next_id(args.platform))
        return 0
    if command == "inventory":
        return await _cmd_inventory(stack, args)
    raise RadioStackError(f"Unknown command: {command}")


async def _main(args: argparse.Namespace, stack_factory: StackFactory) -> int:
    config = RadioStackConfig.load(args.config) if args.config else None
    stack = await stack_factory(config)
    try:
        return await run(stack, args)
    except ConfirmationDeclined as exc:
        logger.info("%s", exc)
        return 1
    except RadioStackError as exc:
        logger.error("%s", exc)
        return 1
    finally:
        await stack.close()


def main(argv: list[str] | None = None, stack_factory: StackFactory | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s: %(message)s",
    )
    try:
        return asyncio.run(_main(args, stack_factory or RadioStack.open))
    except KeyboardInterrupt:
        logger.warning("Interrupted")
        return 130
    except RadioStackError as exc:
        logger.error("%s", exc)
        return 1
