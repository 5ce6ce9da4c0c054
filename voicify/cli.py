"""
Voicify CLI — Voicify

Command-line front end for the demonstration catalog and device replays.

Usage:
    voicify list [--app com.android.settings]
    voicify match "turn on the wifi" --app com.android.settings
    voicify distance "Lights" "light"
    voicify delete com.android.settings "turn on wifi"
    voicify clear --yes
    voicify export --format yaml --output catalog.yaml
    voicify import catalog.yaml
    voicify tree window_dump.xml
    voicify run "turn on wifi" [--app PKG] [--serial SERIAL | --node-url URL]
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from voicify.accessibility import AccessibilityNode, parse_ui_hierarchy
from voicify.catalog import CatalogStore
from voicify.device import AdbInjector, AndroidDevice, HierarchyPoller, LocalAdbTransport, NodeAdbTransport
from voicify.edit_distance import distance, similarity
from voicify.errors import DeviceError, PersistenceError
from voicify.playback import PlaybackConfig, PlaybackResult, ReplayEngine
from voicify.service import COMMAND_DISTANCE_THRESHOLD, VoicifyService
from voicify.speech import Announcer, LoggingAnnouncer, TtsAnnouncer
from voicify.state_bridge import StateBridge

logger = logging.getLogger("cli")


# ===================================================================
# CLI HELPER FUNCTIONS
# ===================================================================

def _format_table(headers: List[str], rows: List[List[str]], max_col: int = 40) -> str:
    """Format a simple ASCII table for CLI output."""
    if not rows:
        return "(no results)"

    trunc = [[v[:max_col - 3] + "..." if len(v) > max_col else v for v in row] for row in rows]

    widths = [len(h) for h in headers]
    for row in trunc:
        for i, v in enumerate(row):
            widths[i] = max(widths[i], len(v))

    fmt = "  ".join(f"{{:<{w}}}" for w in widths)
    lines = [fmt.format(*headers), "  ".join("-" * w for w in widths)]
    lines.extend(fmt.format(*row) for row in trunc)
    return "\n".join(lines)


def _get_store(args: argparse.Namespace) -> CatalogStore:
    return CatalogStore(args.catalog) if args.catalog else CatalogStore()


def _format_tree(root: AccessibilityNode) -> str:
    lines = []
    stack = [(root, 0)]
    while stack:
        node, depth = stack.pop()
        lines.append("  " * depth + node.describe())
        stack.extend((child, depth + 1) for child in reversed(node.children))
    return "\n".join(lines)


def _print_result(result: PlaybackResult) -> None:
    status = "OK" if result.success else "FAILED"
    print(f"\n  Playback {status}: {result.command!r}")
    print(f"  Actions: {result.actions_completed}/{result.actions_total}"
          f"  strategies: {', '.join(result.strategies_used) or '-'}")
    if result.error:
        print(f"  Error: {result.error}")
    for spoken in result.announced:
        print(f"  > {spoken}")
    print(f"  Duration: {result.duration_ms / 1000:.1f}s\n")


# ===================================================================
# COMMANDS
# ===================================================================

def _cmd_list(args: argparse.Namespace) -> None:
    """List recorded demonstrations."""
    catalog = _get_store(args).load()
    demos = [d for d in catalog if args.app is None or d.app_identifier == args.app]
    if not demos:
        print("No demonstrations found.")
        return

    headers = ["App", "Command", "Actions", "Outputs", "Created"]
    rows = [
        [d.app_identifier or "-", d.command, str(len(d.actions)),
         str(len(d.output_selections)), d.created_at[:19]]
        for d in demos
    ]
    print(f"\n  Demonstrations  --  {len(demos)} total\n")
    print(_format_table(headers, rows))
    print()


def _cmd_match(args: argparse.Namespace) -> None:
    """Show which demonstration a phrase resolves to."""
    catalog = _get_store(args).load()
    demo = catalog.find_best_match(args.phrase, args.app)
    if demo is None:
        print(f"No demonstrations for {args.app}.")
        return
    accepted = demo.match_distance <= args.threshold
    print(f"Best match: {demo.command!r}")
    print(f"  distance:   {demo.match_distance}")
    print(f"  similarity: {similarity(args.phrase, demo.command):.2f}")
    print(f"  accepted:   {'yes' if accepted else 'no'} (threshold {args.threshold})")


def _cmd_distance(args: argparse.Namespace) -> None:
    """Print the edit distance between two phrases."""
    print(distance(args.a, args.b))


def _cmd_delete(args: argparse.Namespace) -> None:
    """Delete one demonstration."""
    store = _get_store(args)
    catalog = store.load()
    if not catalog.remove(args.app, args.phrase):
        print(f"Not found: {args.phrase!r} in {args.app}")
        return
    try:
        store.save(catalog)
    except PersistenceError as exc:
        print(f"Delete failed: {exc}")
        return
    print(f"Deleted {args.phrase!r} from {args.app}")


def _cmd_clear(args: argparse.Namespace) -> None:
    """Remove every demonstration."""
    if not args.yes:
        print("Refusing to clear the catalog without --yes.")
        return
    store = _get_store(args)
    catalog = store.load()
    count = len(catalog)
    catalog.clear()
    try:
        store.save(catalog)
    except PersistenceError as exc:
        print(f"Clear failed: {exc}")
        return
    print(f"Cleared {count} demonstrations.")


def _cmd_export(args: argparse.Namespace) -> None:
    """Export the catalog to a JSON or YAML file."""
    store = _get_store(args)
    output = args.output or f"voicify_export.{'yaml' if args.format == 'yaml' else 'json'}"
    try:
        path = store.export(store.load(), output, format=args.format)
    except (ValueError, PersistenceError) as exc:
        print(f"Export failed: {exc}")
        return
    print(f"Exported to: {path}")


def _cmd_import(args: argparse.Namespace) -> None:
    """Merge demonstrations from an export file into the catalog."""
    store = _get_store(args)
    try:
        demos = store.import_file(args.file)
    except (FileNotFoundError, ValueError) as exc:
        print(f"Import failed: {exc}")
        return

    catalog = store.load()
    replaced = sum(1 for demo in demos if catalog.add(demo))
    try:
        store.save(catalog)
    except PersistenceError as exc:
        print(f"Import failed: {exc}")
        return
    print(f"Imported {len(demos)} demonstrations ({replaced} replaced).")


def _cmd_tree(args: argparse.Namespace) -> None:
    """Print the node tree of a uiautomator dump."""
    content = Path(args.file).read_text(encoding="utf-8")
    root = parse_ui_hierarchy(content)
    if root is None:
        print("No hierarchy found in dump.")
        return
    print(_format_tree(root))


def _cmd_run(args: argparse.Namespace) -> None:
    """Replay a demonstration on a connected device."""
    if args.node_url:
        transport = NodeAdbTransport(node_url=args.node_url)
    else:
        transport = LocalAdbTransport(serial=args.serial)
    device = AndroidDevice(transport)

    config = PlaybackConfig.from_env()
    if args.wait_before_reading is not None:
        config.wait_before_reading = args.wait_before_reading

    bridge = StateBridge(settle_delay=config.selection_settle_delay,
                         wait_timeout=config.selection_wait_timeout)
    announcer: Announcer = LoggingAnnouncer() if args.no_speech else TtsAnnouncer()
    engine = ReplayEngine(bridge, AdbInjector(transport), announcer, config)
    service = VoicifyService(engine, bridge, _get_store(args),
                             command_distance_threshold=args.threshold)

    poller = HierarchyPoller(device, service.on_accessibility_event, interval=args.poll_interval)
    try:
        if poller.poll_once() is None:
            print("Could not read the device UI hierarchy.")
            return
        app = args.app or device.current_package() or None
        poller.start()
        if not service.on_voice_command(args.phrase, app):
            print(f"No good match for {args.phrase!r}.")
            return
        result = service.wait_for_playback(timeout=args.timeout)
        if result is None:
            print("Playback did not finish in time.")
            return
        _print_result(result)
    except DeviceError as exc:
        print(f"Device error: {exc}")
    finally:
        poller.stop(timeout=2.0)
        announcer.shutdown()


# ===================================================================
# CLI ENTRY POINT
# ===================================================================

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="voicify",
        description="Voicify — voice commands by demonstration",
    )
    parser.add_argument("--catalog", type=str, default=None, help="Catalog file (default: data/voicify_catalog.json)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # list
    sp_list = subparsers.add_parser("list", help="List demonstrations")
    sp_list.add_argument("--app", type=str, default=None, help="Filter by app package")
    sp_list.set_defaults(func=_cmd_list)

    # match
    sp_match = subparsers.add_parser("match", help="Resolve a phrase to a demonstration")
    sp_match.add_argument("phrase", help="Spoken phrase")
    sp_match.add_argument("--app", type=str, required=True, help="Foreground app package")
    sp_match.add_argument("--threshold", type=int, default=COMMAND_DISTANCE_THRESHOLD,
                          help=f"Max accepted distance (default: {COMMAND_DISTANCE_THRESHOLD})")
    sp_match.set_defaults(func=_cmd_match)

    # distance
    sp_dist = subparsers.add_parser("distance", help="Edit distance between two phrases")
    sp_dist.add_argument("a")
    sp_dist.add_argument("b")
    sp_dist.set_defaults(func=_cmd_distance)

    # delete
    sp_del = subparsers.add_parser("delete", help="Delete a demonstration")
    sp_del.add_argument("app", help="App package")
    sp_del.add_argument("phrase", help="Command phrase")
    sp_del.set_defaults(func=_cmd_delete)

    # clear
    sp_clear = subparsers.add_parser("clear", help="Delete every demonstration")
    sp_clear.add_argument("--yes", action="store_true", help="Confirm")
    sp_clear.set_defaults(func=_cmd_clear)

    # export
    sp_exp = subparsers.add_parser("export", help="Export the catalog")
    sp_exp.add_argument("--format", choices=["json", "yaml"], default="json")
    sp_exp.add_argument("--output", type=str, default=None, help="Output file path")
    sp_exp.set_defaults(func=_cmd_export)

    # import
    sp_imp = subparsers.add_parser("import", help="Import demonstrations from a file")
    sp_imp.add_argument("file", help="JSON or YAML export")
    sp_imp.set_defaults(func=_cmd_import)

    # tree
    sp_tree = subparsers.add_parser("tree", help="Print a uiautomator dump as a tree")
    sp_tree.add_argument("file", help="XML dump")
    sp_tree.set_defaults(func=_cmd_tree)

    # run
    sp_run = subparsers.add_parser("run", help="Replay a demonstration on a device")
    sp_run.add_argument("phrase", help="Spoken phrase")
    sp_run.add_argument("--app", type=str, default=None, help="App package (default: foreground app)")
    target = sp_run.add_mutually_exclusive_group()
    target.add_argument("--serial", type=str, default=None, help="adb device serial")
    target.add_argument("--node-url", type=str, default=None, help="OpenClaw node URL")
    sp_run.add_argument("--threshold", type=int, default=COMMAND_DISTANCE_THRESHOLD)
    sp_run.add_argument("--poll-interval", type=float, default=1.0)
    sp_run.add_argument("--wait-before-reading", type=float, default=None)
    sp_run.add_argument("--timeout", type=float, default=300.0, help="Max seconds to wait for playback")
    sp_run.add_argument("--no-speech", action="store_true", help="Log announcements instead of speaking")
    sp_run.set_defaults(func=_cmd_run)

    return parser


def main(argv: Optional[List[str]] = None) -> None:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    if not getattr(args, "func", None):
        parser.print_help()
        sys.exit(1)

    args.func(args)


if __name__ == "__main__":
    main()
