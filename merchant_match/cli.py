from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Optional, Sequence

from merchant_match import __version__ as TOOL_VERSION
from merchant_match.contracts import build_contract
from merchant_match.errors import RESOURCE_ERROR_KINDS, ErrorKind, MerchantMatchError
from merchant_match.fields import CanonicalField
from merchant_match.flagging import FLAG_ID_KEY, SOURCE_FILE_KEY, default_export_name, find_flag_candidate
from merchant_match.index import all_tables, hold_tables
from merchant_match.keys import normalize_key, safe_trim
from merchant_match.loader import load_table, load_table_from_url
from merchant_match.manual_entry import build_entry
from merchant_match.models import ResourceKind, SearchHit, UpdateRequest
from merchant_match.resources import FileResourceHandle
from merchant_match.state import AppState, resolve_workspace

EXIT_SUCCESS = 0
EXIT_COMMAND_ERROR = 1
EXIT_UNREADABLE_INPUT = 2
EXIT_NOT_FOUND = 3
EXIT_RESOURCE_ERROR = 4
EXIT_INVALID_CONFIG = 5

KIND_CHOICES = [kind.value for kind in ResourceKind]

logger = logging.getLogger("merchant_match")


class CliError(Exception):
    def __init__(self, message: str, code: int = EXIT_COMMAND_ERROR) -> None:
        super().__init__(message)
        self.code = code


class MerchantMatchArgumentParser(argparse.ArgumentParser):
    def error(self, message: str) -> None:
        raise CliError(message, EXIT_COMMAND_ERROR)


def eprint(message: str) -> None:
    print(message, file=sys.stderr)


def emit_human(message: str, *, quiet: bool = False) -> None:
    if not quiet:
        eprint(message)


def json_dumps(payload: Any) -> str:
    return json.dumps(payload, indent=2, ensure_ascii=False, sort_keys=True)


def maybe_emit_json_stdout(payload: Any, enabled: bool) -> None:
    if enabled:
        print(json_dumps(payload))


def configure_logging(args: argparse.Namespace) -> None:
    if getattr(args, "verbose", False):
        level = logging.DEBUG
    elif getattr(args, "quiet", False):
        level = logging.WARNING
    else:
        level = logging.INFO
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s", stream=sys.stderr, force=True)


def exception_message(exc: BaseException) -> str:
    if isinstance(exc, KeyError) and exc.args:
        return str(exc.args[0])
    return str(exc)


def classify_exception(exc: Exception) -> int:
    if isinstance(exc, CliError):
        return exc.code
    if isinstance(exc, MerchantMatchError):
        if exc.kind is ErrorKind.INVALID_CONFIG:
            return EXIT_INVALID_CONFIG
        if exc.kind in RESOURCE_ERROR_KINDS:
            return EXIT_RESOURCE_ERROR
        return EXIT_NOT_FOUND
    if isinstance(exc, KeyError):
        return EXIT_NOT_FOUND
    if isinstance(exc, (FileNotFoundError, ImportError, UnicodeDecodeError, ValueError)):
        return EXIT_UNREADABLE_INPUT
    return EXIT_COMMAND_ERROR


def cli_permission_prompt(handle: FileResourceHandle) -> bool:
    if not sys.stdin.isatty():
        return False
    answer = input(f"{handle.path} is not writable. Fix its permissions, then type 'y' to retry: ")
    return answer.strip().lower() in {"y", "yes"}


def open_state(args: argparse.Namespace) -> AppState:
    return AppState.open(resolve_workspace(args.workspace), prompt=cli_permission_prompt)


def parse_assignments(assignments: Sequence[str] | None) -> dict[CanonicalField, str]:
    values: dict[CanonicalField, str] = {}
    for item in assignments or []:
        if "=" not in item:
            raise CliError(f"Expected FIELD=VALUE, got '{item}'", EXIT_COMMAND_ERROR)
        key, value = item.split("=", 1)
        canonical = CanonicalField.parse(key)
        if canonical is None:
            known = ", ".join(canonical.value for canonical in CanonicalField)
            raise CliError(f"Unknown field '{key}'. Known fields: {known}", EXIT_COMMAND_ERROR)
        values[canonical] = value.strip()
    return values


def render_record(record: dict[str, Any]) -> str:
    width = max((len(str(key)) for key in record), default=0)
    return "\n".join(f"  {str(key).ljust(width)}  {safe_trim(value)}" for key, value in record.items())


def render_hits(hits: list[SearchHit], index) -> str:
    lines = []
    for position, hit in enumerate(hits, start=1):
        config = index.config_for(index.get(hit.source_table))
        identifier = safe_trim(hit.record.get(config.identifier_column)) if config.identifier_column else ""
        name = safe_trim(hit.record.get(config.name_column)) if config.name_column else ""
        lines.append(f"{position:>3}. {identifier or '-'}  {name or '-'}  [{hit.source_table}]")
    return "\n".join(lines)


# ══════════════════════════════════════════════════════════════════════════════
# COMMANDS
# ══════════════════════════════════════════════════════════════════════════════

def run_load(args: argparse.Namespace) -> int:
    state = open_state(args)
    source = args.source.strip()
    if source.lower().startswith(("http://", "https://")):
        table = load_table_from_url(source)
    else:
        table = load_table(Path(source), name=args.name)
    state.tables.add(table)
    payload = {"name": table.name, "rowCount": table.row_count, "columns": table.columns}
    if args.json:
        maybe_emit_json_stdout(payload, True)
    else:
        emit_human(f"Loaded {table.name}: {table.row_count} row(s), {len(table.columns)} column(s)", quiet=args.quiet)
    return EXIT_SUCCESS


def run_tables(args: argparse.Namespace) -> int:
    state = open_state(args)
    index = state.index()
    payload = []
    for table in index.tables:
        config = index.config_for(table)
        payload.append(
            {
                "name": table.name,
                "rowCount": table.row_count,
                "columns": table.columns,
                "identifierColumn": config.identifier_column,
                "nameColumn": config.name_column,
            }
        )
    if args.json:
        maybe_emit_json_stdout(payload, True)
    elif not payload:
        emit_human("No tables loaded. Use 'merchant-match load <file>'.", quiet=args.quiet)
    else:
        for entry in payload:
            print(f"{entry['name']}  rows={entry['rowCount']}  id={entry['identifierColumn'] or '-'}  name={entry['nameColumn'] or '-'}")
    return EXIT_SUCCESS


def run_unload(args: argparse.Namespace) -> int:
    state = open_state(args)
    if not state.tables.remove(args.name):
        raise CliError(f"No loaded table named '{args.name}'", EXIT_NOT_FOUND)
    emit_human(f"Unloaded {args.name}", quiet=args.quiet)
    return EXIT_SUCCESS


def run_search(args: argparse.Namespace) -> int:
    state = open_state(args)
    index = state.index()
    canonical = CanonicalField.NAME if args.by == "name" else CanonicalField.IDENTIFIER
    eligible = all_tables if args.all_tables else hold_tables
    hits = index.search(args.query, canonical, limit=args.limit, eligible=eligible)
    if args.json:
        maybe_emit_json_stdout(
            {"contract": build_contract("merchant_match.search"), "query": args.query, "hits": [hit.annotated() for hit in hits]},
            True,
        )
    elif hits:
        print(render_hits(hits, index))
    else:
        emit_human(f"No matches for '{args.query}'.", quiet=args.quiet)
    return EXIT_SUCCESS if hits else EXIT_NOT_FOUND


def run_show(args: argparse.Namespace) -> int:
    state = open_state(args)
    index = state.index()
    eligible = all_tables if args.all_tables else hold_tables
    hits = index.search(args.identifier, CanonicalField.IDENTIFIER, eligible=eligible)
    if not hits:
        raise CliError(f"Merchant '{args.identifier}' not found in any searchable table", EXIT_NOT_FOUND)
    key = normalize_key(args.identifier)
    chosen = hits[0]
    for hit in hits:
        config = index.config_for(index.get(hit.source_table))
        if config.identifier_column and normalize_key(hit.record.get(config.identifier_column)) == key:
            chosen = hit
            break

    reconciled = state.reconciler(index).reconcile_hit(chosen)
    if args.json:
        maybe_emit_json_stdout({"contract": build_contract("merchant_match.show"), **reconciled.to_dict()}, True)
    else:
        print(f"Merchant {reconciled.identifier or args.identifier} (sources: {', '.join(reconciled.sources)})")
        print(render_record(reconciled.to_labeled_record()))
    return EXIT_SUCCESS


def run_link(args: argparse.Namespace) -> int:
    state = open_state(args)
    path = Path(args.path).expanduser()
    if not path.exists():
        raise CliError(f"File not found: {path}", EXIT_UNREADABLE_INPUT)
    if path.suffix.lower() not in {".xlsx", ".xlsm"}:
        raise CliError(f"Linked files must be .xlsx or .xlsm workbooks, got '{path.suffix}'", EXIT_UNREADABLE_INPUT)
    handle = state.handles.set(ResourceKind.parse(args.kind), path.resolve())
    emit_human(f"Linked {args.kind} sheet to {handle.name}", quiet=args.quiet)
    return EXIT_SUCCESS


def run_update(args: argparse.Namespace) -> int:
    state = open_state(args)
    patch = parse_assignments(args.set)
    if not patch:
        raise CliError("Nothing to update. Pass one or more --set FIELD=VALUE.", EXIT_COMMAND_ERROR)
    request = UpdateRequest.build(args.kind, args.identifier, patch)
    result = state.updater().update(request)
    if args.json:
        maybe_emit_json_stdout({"contract": build_contract("merchant_match.update"), **result.to_dict()}, True)
    else:
        emit_human(
            f"Updated {len(result.changed)} cell(s) for {result.row_key} in {result.resource_name} "
            f"(sheet '{result.sheet_name}', row {result.row_number})",
            quiet=args.quiet,
        )
        if result.skipped:
            emit_human(
                f"Skipped (no matching column): {', '.join(canonical.label for canonical in result.skipped)}",
                quiet=args.quiet,
            )
    return EXIT_SUCCESS


def run_entry_add(args: argparse.Namespace) -> int:
    state = open_state(args)
    record = build_entry(ResourceKind.parse(args.kind), parse_assignments(args.set), profile=state.profile)
    state.manual_entries().add(record)
    if args.json:
        maybe_emit_json_stdout(record, True)
    else:
        emit_human(f"{args.kind} entry for {record[CanonicalField.IDENTIFIER.label]} added to queue.", quiet=args.quiet)
    return EXIT_SUCCESS


def run_entry_list(args: argparse.Namespace) -> int:
    state = open_state(args)
    kind = ResourceKind.parse(args.kind) if args.kind else None
    entries = state.manual_entries().entries(kind)
    if args.json:
        maybe_emit_json_stdout(entries, True)
    elif not entries:
        emit_human("No queued entries.", quiet=args.quiet)
    else:
        for entry in entries:
            print(f"[{entry.get('_type')}] {safe_trim(entry.get(CanonicalField.IDENTIFIER.label))}  {safe_trim(entry.get(CanonicalField.NAME.label))}")
    return EXIT_SUCCESS


def run_append(args: argparse.Namespace) -> int:
    state = open_state(args)
    kind = ResourceKind.parse(args.kind)
    book = state.manual_entries()
    pending = book.entries(kind)
    if not pending:
        raise CliError(f"No new {kind.value} entries to add.", EXIT_COMMAND_ERROR)
    result = state.updater().append(kind, pending)
    if not args.keep:
        book.clear(kind)
    if args.json:
        maybe_emit_json_stdout({"contract": build_contract("merchant_match.append"), **result.to_dict()}, True)
    else:
        emit_human(
            f"Appended {result.rows_added} row(s) to sheet '{result.sheet_name}' in {result.resource_name}",
            quiet=args.quiet,
        )
    return EXIT_SUCCESS


def run_map(args: argparse.Namespace) -> int:
    state = open_state(args)
    profile = state.profile
    if profile is None:
        raise CliError("Column mappings are saved per profile. Run 'merchant-match profile create <name>' first.", EXIT_COMMAND_ERROR)
    canonical = CanonicalField.parse(args.field)
    if canonical is None:
        raise CliError(f"Unknown field '{args.field}'", EXIT_COMMAND_ERROR)
    index = state.index()
    mapping = index.set_override(args.table, canonical, args.column)
    state.profiles.save_mapping(profile.id, args.table, mapping)
    emit_human(f"{args.table}: {canonical.label} -> {args.column} (profile {profile.id})", quiet=args.quiet)
    return EXIT_SUCCESS


def run_profile(args: argparse.Namespace) -> int:
    state = open_state(args)
    if args.profile_command == "create":
        profile = state.profiles.create(args.name, default_held_by=args.held_by, default_pos_ecom=args.pos_ecom)
        maybe_emit_json_stdout(profile.to_dict(), args.json)
        if not args.json:
            emit_human(f"Created profile {profile.id}", quiet=args.quiet)
        return EXIT_SUCCESS
    if args.profile_command == "use":
        profile = state.profiles.use(args.profile_id)
        emit_human(f"Active profile: {profile.id} ({profile.name})", quiet=args.quiet)
        return EXIT_SUCCESS

    profiles = state.profiles.profiles()
    if args.json:
        maybe_emit_json_stdout(
            {"activeProfileId": state.profiles.active_id, "profiles": [profile.to_dict() for profile in profiles]},
            True,
        )
    else:
        for profile in profiles:
            marker = "*" if profile.id == state.profiles.active_id else " "
            print(f"{marker} {profile.id}  {profile.name}")
    return EXIT_SUCCESS


def run_config(args: argparse.Namespace) -> int:
    state = open_state(args)
    if args.config_command == "export":
        document = state.profiles.export_config()
        if args.output:
            output = Path(args.output)
            output.parent.mkdir(parents=True, exist_ok=True)
            output.write_text(json.dumps(document, indent=2, ensure_ascii=False) + "\n", encoding="utf-8")
            emit_human(f"Config written: {output}", quiet=args.quiet)
        else:
            print(json.dumps(document, indent=2, ensure_ascii=False))
        return EXIT_SUCCESS

    source = Path(args.path)
    if not source.exists():
        raise CliError(f"File not found: {source}", EXIT_UNREADABLE_INPUT)
    try:
        payload = json.loads(source.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise CliError(f"Invalid configuration file: {exc}", EXIT_INVALID_CONFIG) from exc
    imported = state.profiles.import_config(payload)
    emit_human(f"Imported {len(imported)} profile(s)", quiet=args.quiet)
    return EXIT_SUCCESS


def run_flag(args: argparse.Namespace) -> int:
    state = open_state(args)
    if args.flag_command == "add":
        candidate = find_flag_candidate(args.identifier, state.index())
        if candidate is None:
            raise CliError(f"Merchant MID \"{args.identifier}\" not found in any loaded database.", EXIT_NOT_FOUND)
        duplicates = state.flags.duplicate_count(args.identifier)
        if duplicates and not args.force:
            raise CliError(
                f"Merchant already flagged {duplicates} time(s). Pass --force to add another entry.",
                EXIT_COMMAND_ERROR,
            )
        entry = state.flags.add(candidate)
        if args.json:
            maybe_emit_json_stdout(entry, True)
        else:
            emit_human(f"Flagged merchant from {candidate[SOURCE_FILE_KEY]} as #{entry[FLAG_ID_KEY]}", quiet=args.quiet)
        return EXIT_SUCCESS

    if args.flag_command == "remove":
        if not state.flags.remove(args.flag_id):
            raise CliError(f"No flagged entry #{args.flag_id}", EXIT_NOT_FOUND)
        emit_human(f"Removed flag #{args.flag_id}", quiet=args.quiet)
        return EXIT_SUCCESS

    if args.flag_command == "export":
        output = state.flags.export(Path(args.output or default_export_name()))
        emit_human(f"Flagged merchants written: {output}", quiet=args.quiet)
        return EXIT_SUCCESS

    flags = state.flags.flags()
    if args.json:
        maybe_emit_json_stdout({"contract": build_contract("merchant_match.flagged"), "flags": flags}, True)
    elif not flags:
        emit_human("No flagged merchants.", quiet=args.quiet)
    else:
        for entry in flags:
            print(f"#{entry[FLAG_ID_KEY]}  {entry.get('Flagged_Date', '')}  [{entry.get(SOURCE_FILE_KEY, '')}]")
    return EXIT_SUCCESS


def run_version() -> int:
    print(TOOL_VERSION)
    return EXIT_SUCCESS


# ══════════════════════════════════════════════════════════════════════════════
# PARSER
# ══════════════════════════════════════════════════════════════════════════════

def add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--workspace", help="Workspace directory (default: $MERCHANT_MATCH_HOME or ./.merchant-match)")
    parser.add_argument("--json", action="store_true", help="Write machine JSON to stdout")
    parser.add_argument("-q", "--quiet", action="store_true", help="Minimal human logs")
    parser.add_argument("-v", "--verbose", action="store_true", help="More human logs")


def build_parser() -> argparse.ArgumentParser:
    parser = MerchantMatchArgumentParser(
        prog="merchant-match",
        description="Find merchant records across messy spreadsheet exports and write edits back.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    load = subparsers.add_parser("load", help="Load a spreadsheet file or http(s) URL as a table.")
    load.add_argument("source", help="File path or URL")
    load.add_argument("--name", help="Table name (default: file name)")
    add_common_arguments(load)

    tables = subparsers.add_parser("tables", help="List loaded tables.")
    add_common_arguments(tables)

    unload = subparsers.add_parser("unload", help="Remove a loaded table.")
    unload.add_argument("name", help="Table name")
    add_common_arguments(unload)

    search = subparsers.add_parser("search", help="Search merchants by ID or name.")
    search.add_argument("query", help="Text to look for")
    search.add_argument("--by", choices=["id", "name"], default="id", help="Field to search")
    search.add_argument("--all-tables", action="store_true", help="Search every table, not just hold tables")
    search.add_argument("--limit", type=int, default=20, help="Maximum number of hits")
    add_common_arguments(search)

    show = subparsers.add_parser("show", help="Show one merchant merged across all loaded tables.")
    show.add_argument("identifier", help="Merchant ID")
    show.add_argument("--all-tables", action="store_true", help="Look the merchant up in every table")
    add_common_arguments(show)

    link = subparsers.add_parser("link", help="Link the workbook that updates are written into.")
    link.add_argument("kind", choices=KIND_CHOICES, type=str.upper, help="Resource kind")
    link.add_argument("path", help="Workbook path")
    add_common_arguments(link)

    update = subparsers.add_parser("update", help="Write field values into the linked workbook row.")
    update.add_argument("identifier", help="Merchant ID of the row to patch")
    update.add_argument("--set", action="append", metavar="FIELD=VALUE", help="Field assignment (repeatable)")
    update.add_argument("--kind", choices=KIND_CHOICES, type=str.upper, default="HOLD", help="Linked workbook to write")
    add_common_arguments(update)

    entry = subparsers.add_parser("entry", help="Queue new records for a later append.")
    entry_subparsers = entry.add_subparsers(dest="entry_command", required=True)
    entry_add = entry_subparsers.add_parser("add", help="Queue a new HOLD or RM record.")
    entry_add.add_argument("kind", choices=KIND_CHOICES, type=str.upper, help="Entry kind")
    entry_add.add_argument("--set", action="append", metavar="FIELD=VALUE", help="Field assignment (repeatable)")
    add_common_arguments(entry_add)
    entry_list = entry_subparsers.add_parser("list", help="List queued records.")
    entry_list.add_argument("--kind", choices=KIND_CHOICES, type=str.upper, help="Only this kind")
    add_common_arguments(entry_list)

    append = subparsers.add_parser("append", help="Append queued records to the linked workbook.")
    append.add_argument("kind", choices=KIND_CHOICES, type=str.upper, help="Resource kind")
    append.add_argument("--keep", action="store_true", help="Keep queued records after appending")
    add_common_arguments(append)

    mapping = subparsers.add_parser("map", help="Pin a field to a column for one table in the active profile.")
    mapping.add_argument("table", help="Table name")
    mapping.add_argument("field", help="Field name or label")
    mapping.add_argument("column", help="Column name in the table")
    add_common_arguments(mapping)

    profile = subparsers.add_parser("profile", help="Manage user profiles.")
    profile_subparsers = profile.add_subparsers(dest="profile_command", required=True)
    profile_create = profile_subparsers.add_parser("create", help="Create a profile.")
    profile_create.add_argument("name", help="Display name")
    profile_create.add_argument("--held-by", default="", help="Default 'Held By' value")
    profile_create.add_argument("--pos-ecom", default="", help="Default 'POS/ECOM' value")
    add_common_arguments(profile_create)
    profile_use = profile_subparsers.add_parser("use", help="Switch the active profile.")
    profile_use.add_argument("profile_id", help="Profile id")
    add_common_arguments(profile_use)
    profile_list = profile_subparsers.add_parser("list", help="List profiles.")
    add_common_arguments(profile_list)

    config = subparsers.add_parser("config", help="Export or import profiles.")
    config_subparsers = config.add_subparsers(dest="config_command", required=True)
    config_export = config_subparsers.add_parser("export", help="Write the config document.")
    config_export.add_argument("--output", help="Output path (default: stdout)")
    add_common_arguments(config_export)
    config_import = config_subparsers.add_parser("import", help="Import a config document.")
    config_import.add_argument("path", help="Config JSON path")
    add_common_arguments(config_import)

    flag = subparsers.add_parser("flag", help="Manage flagged merchants.")
    flag_subparsers = flag.add_subparsers(dest="flag_command", required=True)
    flag_add = flag_subparsers.add_parser("add", help="Flag a merchant found in any loaded table.")
    flag_add.add_argument("identifier", help="Merchant ID")
    flag_add.add_argument("--force", action="store_true", help="Flag again even if already flagged")
    add_common_arguments(flag_add)
    flag_list = flag_subparsers.add_parser("list", help="List flagged merchants.")
    add_common_arguments(flag_list)
    flag_remove = flag_subparsers.add_parser("remove", help="Remove a flagged entry.")
    flag_remove.add_argument("flag_id", type=int, help="Flag id")
    add_common_arguments(flag_remove)
    flag_export = flag_subparsers.add_parser("export", help="Export flagged merchants to .xlsx.")
    flag_export.add_argument("--output", help="Output path")
    add_common_arguments(flag_export)

    subparsers.add_parser("version", help="Print version")
    return parser


COMMANDS = {
    "load": run_load,
    "tables": run_tables,
    "unload": run_unload,
    "search": run_search,
    "show": run_show,
    "link": run_link,
    "update": run_update,
    "append": run_append,
    "map": run_map,
    "profile": run_profile,
    "config": run_config,
    "flag": run_flag,
}


def dispatch(args: argparse.Namespace) -> int:
    if args.command == "version":
        return run_version()
    if args.command == "entry":
        return run_entry_add(args) if args.entry_command == "add" else run_entry_list(args)
    handler = COMMANDS.get(args.command)
    if handler is None:
        raise CliError(f"Unknown command: {args.command}", EXIT_COMMAND_ERROR)
    return handler(args)


def main(argv: Optional[list[str]] = None) -> int:
    try:
        parser = build_parser()
        args = parser.parse_args(argv)
    except CliError as exc:
        eprint(str(exc))
        return exc.code

    configure_logging(args)
    try:
        return dispatch(args)
    except MerchantMatchError as exc:
        if getattr(args, "json", False):
            maybe_emit_json_stdout({"error": exc.to_dict()}, True)
        eprint(exc.message)
        return classify_exception(exc)
    except Exception as exc:
        logger.debug("Command failed", exc_info=True)
        eprint(exception_message(exc))
        return classify_exception(exc)


if __name__ == "__main__":
    raise SystemExit(main())
