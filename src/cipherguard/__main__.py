# Main Entry Point - Command Line Front End
#
# Thin argparse wrapper around VaultEngine. Each invocation bootstraps the
# engine from the configured store, unlocks when the command needs entries,
# performs one operation and exits (the vault is never left unlocked).
#
# The master password is read with getpass, or from
# CIPHERGUARD_MASTER_PASSWORD for scripted use.

import argparse
import getpass
import os
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from . import __version__
from .core import configure_logging, get_logger, load_settings
from .vault import (
    DecodeError,
    VaultEngine,
    VaultEntry,
    VaultError,
    VaultPhase,
    build_store,
)
from .vault.passwords import calculate_strength, generate_password

logger = get_logger(__name__)

ENV_MASTER_PASSWORD = "CIPHERGUARD_MASTER_PASSWORD"

EXIT_OK = 0
EXIT_ERROR = 1


def _read_master_password(confirm: bool = False) -> str:
    from_env = os.environ.get(ENV_MASTER_PASSWORD)
    if from_env is not None:
        return from_env

    password = getpass.getpass("Master password: ")
    if confirm and getpass.getpass("Confirm master password: ") != password:
        raise ValueError("Passwords do not match.")
    return password


def _format_timestamp(millis: Optional[int]) -> str:
    if millis is None:
        return "never"
    return datetime.fromtimestamp(millis / 1000, tz=timezone.utc).isoformat(timespec="seconds")


def _print_entry(entry: VaultEntry, reveal: bool = False) -> None:
    print(f"ID:        {entry.id}")
    print(f"Title:     {entry.title}")
    print(f"Username:  {entry.username}")
    print(f"Password:  {entry.password if reveal else '********'}")
    if entry.url:
        print(f"URL:       {entry.url}")
    if entry.notes:
        print(f"Notes:     {entry.notes}")
    if entry.tags:
        print(f"Tags:      {', '.join(entry.tags)}")
    print(f"Created:   {entry.created_at}")
    print(f"Updated:   {entry.updated_at}")


def _unlock(engine: VaultEngine) -> None:
    if engine.phase is VaultPhase.SETUP:
        raise VaultError("Vault does not exist. Run 'cipherguard init' first.")
    engine.unlock(_read_master_password())


# ── Commands ─────────────────────────────────────────────────────────


def cmd_status(engine: VaultEngine, args) -> int:
    print(f"Vault phase:   {engine.phase.value}")
    print(f"Last updated:  {_format_timestamp(engine.last_updated)}")
    if engine.metadata is not None:
        print(f"Iterations:    {engine.metadata.iterations}")
    return EXIT_OK


def cmd_init(engine: VaultEngine, args) -> int:
    password = _read_master_password(confirm=True)
    engine.initialize(password)
    engine.lock()
    print("Vault created successfully!")
    return EXIT_OK


def cmd_list(engine: VaultEngine, args) -> int:
    _unlock(engine)
    entries = engine.search_entries(term=args.search, tag=args.tag)
    if not entries:
        print("No entries.")
    for entry in entries:
        tags = f"  [{', '.join(entry.tags)}]" if entry.tags else ""
        print(f"{entry.id}  {entry.title}  ({entry.username}){tags}")
    return EXIT_OK


def cmd_show(engine: VaultEngine, args) -> int:
    _unlock(engine)
    _print_entry(engine.get_entry(args.id), reveal=args.reveal)
    return EXIT_OK


def cmd_add(engine: VaultEngine, args) -> int:
    _unlock(engine)
    if args.generate:
        password = generate_password(length=args.length)
    elif args.password is not None:
        password = args.password
    else:
        password = getpass.getpass("Entry password: ")

    entry = engine.add_entry(
        title=args.title,
        username=args.username,
        password=password,
        url=args.url,
        notes=args.notes,
        tags=args.tag,
    )
    print(f"Entry added! ID: {entry.id}")
    return EXIT_OK


def cmd_edit(engine: VaultEngine, args) -> int:
    changes = {
        name: getattr(args, name)
        for name in ("title", "username", "password", "url", "notes")
        if getattr(args, name) is not None
    }
    if args.tag is not None:
        changes["tags"] = args.tag
    if not changes:
        print("Nothing to change.", file=sys.stderr)
        return EXIT_ERROR

    _unlock(engine)
    entry = engine.update_entry(args.id, **changes)
    print(f"Entry updated: {entry.id}")
    return EXIT_OK


def cmd_delete(engine: VaultEngine, args) -> int:
    _unlock(engine)
    engine.delete_entry(args.id)
    print("Entry deleted.")
    return EXIT_OK


def cmd_export(engine: VaultEngine, args) -> int:
    _unlock(engine)
    contents = engine.export_entries()
    if args.output is None:
        print(contents)
        return EXIT_OK

    output = Path(args.output)
    fd = os.open(output, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "w", encoding="utf-8") as fh:
        fh.write(contents)
    print(f"Vault export written to {output} (unencrypted, keep it safe).")
    return EXIT_OK


def cmd_import(engine: VaultEngine, args) -> int:
    raw = Path(args.file).read_text(encoding="utf-8")
    _unlock(engine)
    imported = engine.import_json(raw)
    print(f"Imported {len(imported)} entries (previous entries replaced).")
    return EXIT_OK


def cmd_stats(engine: VaultEngine, args) -> int:
    _unlock(engine)
    stats = engine.compute_stats()
    print(f"Entries:          {stats.total}")
    print(f"Weak passwords:   {stats.weak_passwords}")
    print(f"Tags:             {len(stats.tags)}")
    for tag, count in stats.tags.items():
        print(f"  #{tag}: {count}")
    return EXIT_OK


def cmd_generate(engine: Optional[VaultEngine], args) -> int:
    password = generate_password(
        length=args.length,
        lower=not args.no_lower,
        upper=not args.no_upper,
        digits=not args.no_digits,
        symbols=not args.no_symbols,
    )
    strength = calculate_strength(password)
    print(password)
    print(f"Strength: {strength.label} ({strength.percentage}%)", file=sys.stderr)
    return EXIT_OK


def cmd_reset(engine: VaultEngine, args) -> int:
    if not args.yes:
        answer = input("This permanently deletes the vault. Type 'reset' to confirm: ")
        if answer.strip() != "reset":
            print("Aborted.")
            return EXIT_ERROR
    engine.reset()
    print("Vault deleted.")
    return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cipherguard",
        description="CipherGuard - local encrypted credential vault",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"CipherGuard v{__version__}",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("status", help="Show vault status").set_defaults(func=cmd_status)
    sub.add_parser("init", help="Create a new vault").set_defaults(func=cmd_init)

    p = sub.add_parser("list", help="List entries")
    p.add_argument("--search", help="Case-insensitive text filter")
    p.add_argument("--tag", help="Only entries carrying this tag")
    p.set_defaults(func=cmd_list)

    p = sub.add_parser("show", help="Show one entry")
    p.add_argument("id")
    p.add_argument("--reveal", action="store_true", help="Print the password in clear")
    p.set_defaults(func=cmd_show)

    p = sub.add_parser("add", help="Add an entry")
    p.add_argument("--title", required=True)
    p.add_argument("--username", required=True)
    p.add_argument("--password", help="Entry password (prompted if omitted)")
    p.add_argument("--generate", action="store_true", help="Generate a random password")
    p.add_argument("--length", type=int, default=20, help="Generated password length")
    p.add_argument("--url")
    p.add_argument("--notes")
    p.add_argument("--tag", action="append", help="Tag (repeatable)")
    p.set_defaults(func=cmd_add)

    p = sub.add_parser("edit", help="Update an entry")
    p.add_argument("id")
    p.add_argument("--title")
    p.add_argument("--username")
    p.add_argument("--password")
    p.add_argument("--url")
    p.add_argument("--notes")
    p.add_argument("--tag", action="append", help="Replace tags (repeatable)")
    p.set_defaults(func=cmd_edit)

    p = sub.add_parser("delete", help="Delete an entry")
    p.add_argument("id")
    p.set_defaults(func=cmd_delete)

    p = sub.add_parser("export", help="Export entries as plaintext JSON")
    p.add_argument("--output", "-o", help="File to write (default: stdout)")
    p.set_defaults(func=cmd_export)

    p = sub.add_parser("import", help="Replace all entries from an export file")
    p.add_argument("file")
    p.set_defaults(func=cmd_import)

    sub.add_parser("stats", help="Show vault statistics").set_defaults(func=cmd_stats)

    p = sub.add_parser("generate", help="Generate a random password")
    p.add_argument("--length", type=int, default=20)
    p.add_argument("--no-lower", action="store_true")
    p.add_argument("--no-upper", action="store_true")
    p.add_argument("--no-digits", action="store_true")
    p.add_argument("--no-symbols", action="store_true")
    p.set_defaults(func=cmd_generate)

    p = sub.add_parser("reset", help="Permanently delete the vault")
    p.add_argument("--yes", action="store_true", help="Skip confirmation")
    p.set_defaults(func=cmd_reset)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the cipherguard command."""
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = load_settings()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return EXIT_ERROR
    configure_logging(settings.log_level, settings.log_json)

    if args.func is cmd_generate:
        try:
            return cmd_generate(None, args)
        except ValueError as e:
            print(f"Error: {e}", file=sys.stderr)
            return EXIT_ERROR

    try:
        engine = VaultEngine(build_store(settings), iterations=settings.iterations)
        try:
            engine.bootstrap()
        except DecodeError as e:
            print(f"Warning: vault record is unreadable ({e}).", file=sys.stderr)
            if args.func not in (cmd_status, cmd_reset):
                return EXIT_ERROR
        return args.func(engine, args)
    except (VaultError, ValueError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_ERROR
    finally:
        logger.debug("command_finished", command=args.command)


if __name__ == "__main__":
    sys.exit(main())
