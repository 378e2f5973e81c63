"""Entry point: python -m threadline <command> [options]

Plain-text output on stdout, diagnostics on stderr. Exit status is 0 on
success and 1 when a lookup fails, an operation is refused, or input is
rejected.
"""

from __future__ import annotations

import argparse
import logging
import sys
from collections.abc import Callable
from pathlib import Path

from threadline.config import load_config
from threadline.core import Threadline
from threadline.errors import ThreadlineError
from threadline.hierarchy import DELETE_STRATEGIES
from threadline.models import LINK_TYPES, SIZES, STATUSES, TEMPERATURES, UNSET, Thread
from threadline.results import Ambiguous, CycleDetected, NotFound


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.WARNING),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
        stream=sys.stderr,
    )


# ── Output helpers ────────────────────────────────────────


def _label(record) -> str:
    return f"{record.name} [{record.id[:8]}]"


def _out(line: str = "") -> None:
    print(line)


def _err(line: str) -> None:
    print(line, file=sys.stderr)


def _report(result) -> int | None:
    """Print a lookup/cycle failure and return exit status 1; None otherwise."""
    if isinstance(result, NotFound):
        _err(f'Not found: "{result.query}"')
        return 1
    if isinstance(result, Ambiguous):
        _err(f'"{result.query}" is ambiguous; candidates:')
        for candidate in result.candidates:
            _err(f"  - {_label(candidate)}")
        return 1
    if isinstance(result, CycleDetected):
        _err(f"Refused: {result.parent_id[:8]} is {result.entity_id[:8]} or one of its descendants")
        return 1
    return None


def _print_tree(descendants) -> None:
    for d in descendants:
        _out(f"{'  ' * (d.depth + 1)}- {_label(d.entity)} ({d.entity.kind})")


# ── Parser ────────────────────────────────────────────────


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="threadline",
        description="Track threads of activity in a local JSON store.",
    )
    parser.add_argument("--data-dir", type=Path, help="Override the data directory")
    parser.add_argument("--log-level", help="Logging level (default from config)")
    sub = parser.add_subparsers(dest="cmd", required=True)

    new = sub.add_parser("new", help="Create a thread.")
    new.add_argument("name")
    new.add_argument("-d", "--description", default="")
    new.add_argument("-s", "--status", default="active", choices=STATUSES)
    new.add_argument("-t", "--temperature", default="warm", choices=TEMPERATURES)
    new.add_argument("-z", "--size", default="medium", choices=SIZES)
    new.add_argument("-i", "--importance", default="3")
    new.add_argument("-p", "--parent")
    new.add_argument("-g", "--group")
    new.add_argument("-T", "--tags", action="append", default=[])

    spawn = sub.add_parser("spawn", help="Create a sub-thread under a thread.")
    spawn.add_argument("parent")
    spawn.add_argument("name")
    spawn.add_argument("-d", "--description", default="")
    spawn.add_argument("-z", "--size", default="small", choices=SIZES)
    spawn.add_argument("-i", "--importance")
    spawn.add_argument("-T", "--tags", action="append", default=[])

    container = sub.add_parser("container", help="Create a container.")
    container.add_argument("name")
    container.add_argument("-d", "--description", default="")
    container.add_argument("-p", "--parent")
    container.add_argument("-g", "--group")
    container.add_argument("-T", "--tags", action="append", default=[])

    group = sub.add_parser("group", help="Create, delete or assign groups.")
    group_sub = group.add_subparsers(dest="group_cmd", required=True)
    group_new = group_sub.add_parser("new")
    group_new.add_argument("name")
    group_new.add_argument("-d", "--description", default="")
    group_delete = group_sub.add_parser("delete")
    group_delete.add_argument("group")
    group_assign = group_sub.add_parser("assign", help="Put an entity in a group ('none' to clear).")
    group_assign.add_argument("identifier")
    group_assign.add_argument("group")

    set_ = sub.add_parser(
        "set", help="Set a property (status, temperature, size, importance, name, description, parent)."
    )
    set_.add_argument("identifier")
    set_.add_argument("property")
    set_.add_argument("value")

    progress = sub.add_parser("progress", help="Add a progress note to a thread.")
    progress.add_argument("identifier")
    progress.add_argument("note")
    progress.add_argument("--at", help='Timestamp: ISO-8601, "yesterday" or "N days ago"')
    bump = progress.add_mutually_exclusive_group()
    bump.add_argument("--warm", dest="temperature", action="store_const", const="warm")
    bump.add_argument("--hot", dest="temperature", action="store_const", const="hot")

    edit_progress = sub.add_parser("edit-progress", help="Edit or delete one progress entry.")
    edit_progress.add_argument("identifier")
    edit_progress.add_argument("index", help='1-based position, or "last"')
    edit_progress.add_argument("-n", "--note", help="New note text")
    edit_progress.add_argument("-t", "--at", help='New timestamp: ISO-8601, "yesterday" or "N days ago"')
    edit_progress.add_argument("-d", "--delete", action="store_true")

    details = sub.add_parser("details", help="Add a details snapshot.")
    details.add_argument("identifier")
    details.add_argument("content")

    tag = sub.add_parser("tag", help="Add tags (or remove them with --remove / --clear).")
    tag.add_argument("identifier")
    tag.add_argument("tags", nargs="*")
    tag.add_argument("-r", "--remove", action="store_true")
    tag.add_argument("-c", "--clear", action="store_true")

    depend = sub.add_parser("depend", help="Record a dependency between threads.")
    depend.add_argument("identifier")
    depend.add_argument("--on", required=True)
    for name in ("why", "what", "how", "when"):
        depend.add_argument(f"--{name}")
    depend.add_argument("--remove", action="store_true")

    link = sub.add_parser("link", help="Attach a link to a thread.")
    link.add_argument("identifier")
    link.add_argument("uri")
    link.add_argument("--type", default="web", choices=LINK_TYPES)
    link.add_argument("-l", "--label")
    link.add_argument("-d", "--description")
    link.add_argument("--remove", action="store_true", help="Remove the link matching URI or id")

    archive = sub.add_parser("archive", help="Archive (or --restore) an entity.")
    archive.add_argument("identifier")
    archive.add_argument("--cascade", action="store_true")
    archive.add_argument("--dry-run", action="store_true")
    archive.add_argument("--restore", action="store_true")

    clone = sub.add_parser("clone", help="Clone an entity.")
    clone.add_argument("identifier")
    clone.add_argument("name", nargs="?")
    clone.add_argument("-p", "--parent", default=UNSET)
    clone.add_argument("-g", "--group", default=UNSET)
    clone.add_argument("--with-children", action="store_true")

    merge = sub.add_parser("merge", help="Merge a thread into another.")
    merge.add_argument("source")
    merge.add_argument("target")
    merge.add_argument("--keep-source", action="store_true")
    merge.add_argument("--dry-run", action="store_true")

    move = sub.add_parser("move", help="Reparent an entity ('none' for root).")
    move.add_argument("identifier")
    move.add_argument("parent")

    move_progress = sub.add_parser("move-progress", help="Move latest progress entries between threads.")
    move_progress.add_argument("source")
    move_progress.add_argument("destination")
    howmany = move_progress.add_mutually_exclusive_group()
    howmany.add_argument("--count", type=int, default=1)
    howmany.add_argument("--all", action="store_true")

    delete = sub.add_parser("delete", help="Delete a thread or container.")
    delete.add_argument("identifier")
    delete.add_argument("--strategy", default="refuse", choices=DELETE_STRATEGIES)
    delete.add_argument("--move-to")
    delete.add_argument("--dry-run", action="store_true")

    batch = sub.add_parser("batch", help="Apply one action to every thread matching the filters.")
    batch.add_argument(
        "action", nargs="*", help="tag add|remove <tags>, set <property> <value>, archive, progress <note>"
    )
    batch.add_argument("--under", help="All descendants of this thread or container")
    batch.add_argument("--children", help="Direct children of this thread or container")
    batch.add_argument("--group")
    batch.add_argument("--status", choices=STATUSES)
    batch.add_argument("--temp", choices=TEMPERATURES)
    batch.add_argument("--tag")
    batch.add_argument("--importance", help="4, 4+ (at least) or 3- (at most)")
    batch.add_argument("--size", choices=SIZES)
    batch.add_argument("--dry-run", action="store_true")

    resolve = sub.add_parser("resolve", help="Show what an identifier resolves to.")
    resolve.add_argument("query")
    resolve.add_argument("--kind", default="entity", choices=("thread", "container", "group", "entity"))

    undo = sub.add_parser("undo", help="Restore the previous snapshot (run again to redo).")
    undo.add_argument("--dry-run", action="store_true")
    undo.add_argument("--list", action="store_true", help="Show backup info only")

    sub.add_parser("backup", help="Show data and backup file locations.")
    return parser


# ── Commands ──────────────────────────────────────────────


def _created(result) -> int:
    failed = _report(result)
    if failed is not None:
        return failed
    _out(f"Created {getattr(result, 'kind', 'group')} {_label(result)}")
    return 0


def cmd_new(app: Threadline, args: argparse.Namespace) -> int:
    return _created(
        app.new_thread(
            args.name,
            description=args.description,
            status=args.status,
            temperature=args.temperature,
            size=args.size,
            importance=args.importance,
            parent=args.parent,
            group=args.group,
            tags=args.tags,
        )
    )


def cmd_spawn(app: Threadline, args: argparse.Namespace) -> int:
    return _created(
        app.spawn(
            args.parent,
            args.name,
            description=args.description,
            size=args.size,
            importance=args.importance,
            tags=args.tags,
        )
    )


def cmd_container(app: Threadline, args: argparse.Namespace) -> int:
    return _created(
        app.new_container(
            args.name,
            description=args.description,
            parent=args.parent,
            group=args.group,
            tags=args.tags,
        )
    )


def cmd_group(app: Threadline, args: argparse.Namespace) -> int:
    if args.group_cmd == "new":
        return _created(app.new_group(args.name, args.description))
    if args.group_cmd == "delete":
        result = app.delete_group(args.group)
        failed = _report(result)
        if failed is not None:
            return failed
        _out(f"Deleted group {_label(result.group)}; ungrouped {result.count} record(s)")
        return 0
    result = app.set_group(args.identifier, args.group)
    failed = _report(result)
    if failed is not None:
        return failed
    _out(f"{_label(result)} group: {result.group_id or 'none'}")
    return 0


def _updated(result) -> int:
    failed = _report(result)
    if failed is not None:
        return failed
    _out(f"Updated {_label(result)}")
    return 0


def cmd_set(app: Threadline, args: argparse.Namespace) -> int:
    return _updated(app.set_property(args.identifier, args.property, args.value))


def cmd_progress(app: Threadline, args: argparse.Namespace) -> int:
    return _updated(app.add_progress(args.identifier, args.note, at=args.at, temperature=args.temperature))


def cmd_edit_progress(app: Threadline, args: argparse.Namespace) -> int:
    result = app.edit_progress(args.identifier, args.index, note=args.note, at=args.at, delete=args.delete)
    failed = _report(result)
    if failed is not None:
        return failed
    entry = result.entry
    if result.action == "show":
        _out(f"Entry {result.position} of {_label(result.thread)}:")
        _out(f"  [{entry.timestamp}] {entry.note}")
        _out("Use --note and/or --at to edit, or --delete to remove")
        return 0
    verb = "Deleted progress entry from" if result.action == "delete" else "Updated progress entry in"
    _out(f"{verb} {_label(result.thread)}:")
    _out(f"  [{entry.timestamp}] {entry.note}")
    return 0


def cmd_details(app: Threadline, args: argparse.Namespace) -> int:
    return _updated(app.add_details(args.identifier, args.content))


def cmd_tag(app: Threadline, args: argparse.Namespace) -> int:
    if args.clear:
        result = app.untag(args.identifier)
    elif args.remove:
        result = app.untag(args.identifier, args.tags)
    else:
        result = app.tag(args.identifier, args.tags)
    failed = _report(result)
    if failed is not None:
        return failed
    _out(f"{_label(result)} tags: {', '.join(result.tags) or '(none)'}")
    return 0


def cmd_depend(app: Threadline, args: argparse.Namespace) -> int:
    if args.remove:
        return _updated(app.remove_dependency(args.identifier, args.on))
    return _updated(
        app.add_dependency(args.identifier, args.on, why=args.why, what=args.what, how=args.how, when=args.when)
    )


def cmd_link(app: Threadline, args: argparse.Namespace) -> int:
    if args.remove:
        return _updated(app.remove_link(args.identifier, args.uri))
    return _updated(
        app.add_link(args.identifier, args.uri, type=args.type, label=args.label, description=args.description)
    )


def cmd_archive(app: Threadline, args: argparse.Namespace) -> int:
    op = app.restore if args.restore else app.archive
    result = op(args.identifier, cascade=args.cascade, dry_run=args.dry_run)
    failed = _report(result)
    if failed is not None:
        return failed
    if result.refused:
        _err(f"{_label(result.root)} has {len(result.descendants)} descendant(s); use --cascade:")
        _print_tree(result.descendants)
        return 1
    verb = "Would " + result.action if result.dry_run else result.action.capitalize() + "d"
    _out(f"{verb} {len(result.changed)} thread(s):")
    for thread in result.changed:
        _out(f"  - {_label(thread)}")
    return 0


def cmd_clone(app: Threadline, args: argparse.Namespace) -> int:
    result = app.clone(
        args.identifier, args.name, parent=args.parent, group=args.group, with_children=args.with_children
    )
    failed = _report(result)
    if failed is not None:
        return failed
    _out(f"Cloned into {len(result)} record(s):")
    for entity in result:
        _out(f"  - {_label(entity)} ({entity.kind})")
    return 0


def cmd_merge(app: Threadline, args: argparse.Namespace) -> int:
    plan = app.merge(args.source, args.target, keep_source=args.keep_source, dry_run=args.dry_run)
    failed = _report(plan)
    if failed is not None:
        return failed
    prefix = "Would merge" if plan.dry_run else "Merged"
    _out(f"{prefix} {_label(plan.source)} into {_label(plan.target)}")
    _out(f"  progress: {len(plan.progress)}  details: {len(plan.details)}  tags: {len(plan.tags)}")
    _out(f"  dependencies: {len(plan.dependencies)}  children moved: {len(plan.reparented)}")
    if not plan.keep_source:
        _out(f"  source {'would be' if plan.dry_run else 'is'} archived")
    return 0


def cmd_move(app: Threadline, args: argparse.Namespace) -> int:
    return _updated(app.move(args.identifier, args.parent))


def cmd_move_progress(app: Threadline, args: argparse.Namespace) -> int:
    result = app.move_progress(args.source, args.destination, None if args.all else args.count)
    failed = _report(result)
    if failed is not None:
        return failed
    _out(f"Moved {len(result.moved)} progress entr(ies) to {_label(result.destination)}")
    return 0


def cmd_delete(app: Threadline, args: argparse.Namespace) -> int:
    result = app.delete(args.identifier, strategy=args.strategy, move_to=args.move_to, dry_run=args.dry_run)
    failed = _report(result)
    if failed is not None:
        return failed
    if result.refused:
        _err(f"{_label(result.root)} has {len(result.descendants)} descendant(s); choose --strategy:")
        _print_tree(result.descendants)
        return 1
    prefix = "Would delete" if result.dry_run else "Deleted"
    _out(f"{prefix} {len(result.deleted)} record(s)")
    if result.moved:
        _out(f"  {len(result.moved)} child(ren) moved to {result.new_parent_id or 'root'}")
    return 0


def cmd_batch(app: Threadline, args: argparse.Namespace) -> int:
    result = app.batch(
        args.action,
        under=args.under,
        children=args.children,
        group=args.group,
        status=args.status,
        temperature=args.temp,
        tag=args.tag,
        importance=args.importance,
        size=args.size,
        dry_run=args.dry_run,
    )
    failed = _report(result)
    if failed is not None:
        return failed
    if not result.matched:
        _out("No threads match")
        return 0
    if result.dry_run:
        _out(f"Would match {len(result.matched)} thread(s):")
        for thread in result.matched:
            _out(f"  - {_label(thread)}")
        _out(f"Action: {result.action or '(none)'}")
        return 0
    _out(f"Batch {result.action}: matched {len(result.matched)}, changed {len(result.changed)}")
    for thread in result.changed:
        _out(f"  - {_label(thread)}")
    return 0


def cmd_resolve(app: Threadline, args: argparse.Namespace) -> int:
    result = app.resolve(args.kind, args.query)
    failed = _report(result)
    if failed is not None:
        return failed
    record = result.record
    _out(f"{_label(record)} {record.id}")
    if isinstance(record, Thread):
        _out(f"  {record.status}, {record.temperature}, {record.size}, importance {record.importance}")
    return 0


def cmd_undo(app: Threadline, args: argparse.Namespace) -> int:
    info = app.undo_info()
    if not info.exists:
        _err("No backup available")
        return 1
    if args.list:
        when = f"{info.timestamp:%Y-%m-%d %H:%M:%S}" if info.timestamp else "unknown time"
        _out(f"Backup from {when}")
        _out(f"  threads: {info.thread_count}  containers: {info.container_count}  groups: {info.group_count}")
        return 0
    if args.dry_run:
        preview = app.undo_preview()
        if preview is None:
            _err("Backup is not readable")
            return 1
        _out(
            f"Threads {preview.current_threads} -> {preview.backup_threads}, "
            f"groups {preview.current_groups} -> {preview.backup_groups}"
        )
        changes = (("removed", preview.removed), ("restored", preview.restored), ("reverted", preview.reverted))
        for label, threads in changes:
            for thread in threads:
                _out(f"  {label}: {_label(thread)}")
        return 0
    if not app.undo():
        _err("Backup could not be restored")
        return 1
    _out("Restored previous state (run undo again to redo)")
    return 0


def cmd_backup(app: Threadline, args: argparse.Namespace) -> int:
    info = app.undo_info()
    _out(f"Data file:   {app.repo.get_data_file_path()}")
    _out(f"Backup file: {app.repo.get_backup_file_path()}")
    _out(f"Backup:      {'present' if info.exists else 'none'}")
    return 0


_COMMANDS: dict[str, Callable[[Threadline, argparse.Namespace], int]] = {
    "new": cmd_new,
    "spawn": cmd_spawn,
    "container": cmd_container,
    "group": cmd_group,
    "set": cmd_set,
    "progress": cmd_progress,
    "edit-progress": cmd_edit_progress,
    "details": cmd_details,
    "tag": cmd_tag,
    "depend": cmd_depend,
    "link": cmd_link,
    "archive": cmd_archive,
    "clone": cmd_clone,
    "merge": cmd_merge,
    "move": cmd_move,
    "move-progress": cmd_move_progress,
    "delete": cmd_delete,
    "batch": cmd_batch,
    "resolve": cmd_resolve,
    "undo": cmd_undo,
    "backup": cmd_backup,
}


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    config = load_config()
    if args.data_dir is not None:
        config.storage.data_dir = args.data_dir.expanduser()
    _setup_logging(args.log_level or config.log_level)

    app = Threadline.from_config(config)
    try:
        return _COMMANDS[args.cmd](app, args)
    except ThreadlineError as e:
        _err(f"Error: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
