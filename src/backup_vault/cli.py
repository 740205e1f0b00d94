import argparse
import logging
import sys
from typing import List, NoReturn, Optional

from .errors import VaultError
from .mount import mount_backup
from .vault import Vault

logger = logging.getLogger('backup_vault')


def configure_logging(verbosity: int) -> None:
    """
    Send log records to stderr.

    Args:
        verbosity (int): 0 for warnings only, 1 for info, 2+ for debug
    """
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity >= 2:
        level = logging.DEBUG

    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        stream=sys.stderr,
    )


def format_size(size_bytes: int) -> str:
    """Format a byte count in human-readable form."""
    units = ['B', 'KB', 'MB', 'GB', 'TB']
    size = float(size_bytes)
    i = 0
    while size >= 1024 and i < len(units) - 1:
        size /= 1024.0
        i += 1
    return f"{size:.1f} {units[i]}" if i else f"{size_bytes} B"


def print_error_and_exit(error_message: str, exit_code: int = 1) -> NoReturn:
    """
    Print an error message and exit the program with the specified exit code.

    Args:
        error_message (str): The error message to display
        exit_code (int, optional): The exit code to use. Defaults to 1.
    """
    logger.error(error_message)
    print(f"[error] {error_message}", file=sys.stderr)
    sys.exit(exit_code)


def open_vault(args: argparse.Namespace) -> Vault:
    return Vault.open(
        args.vault_dir,
        blocking=not args.no_wait,
        timeout=args.lock_timeout,
    )


def init_command(args: argparse.Namespace) -> None:
    """Create an empty vault."""
    root = Vault.init(args.vault_dir)
    print(f"Initialized empty vault in {root}")


def backup_command(args: argparse.Namespace) -> None:
    """
    Back up a source directory under a name.

    Args:
        args (argparse.Namespace): Command line arguments containing:
            - backup_name: name of the backup
            - source_dir: directory to back up
    """
    with open_vault(args) as vault:
        report = vault.backup(args.backup_name, args.source_dir)

    print(f"Backup {report.name!r} completed:")
    print(f"  files:       {report.files} ({report.new_files} new, {report.reused_files} reused)")
    print(f"  directories: {report.directories}")
    print(f"  symlinks:    {report.symlinks}")
    print(f"  stored:      {report.blocks_copied} blocks, {format_size(report.bytes_copied)}")


def list_command(args: argparse.Namespace) -> None:
    """
    List backups, or the contents of one backup.

    Args:
        args (argparse.Namespace): Command line arguments containing:
            - backup_name: optional name of a single backup to show
    """
    with open_vault(args) as vault:
        if args.backup_name is not None:
            view = vault.get_backup(args.backup_name)
            for rel_dir in sorted(view.directories):
                print(f"d {rel_dir}/")
            for file_view in sorted(view.iter_files(), key=lambda f: f.path):
                print(f"f {file_view.path}\t{file_view.hash}\t{file_view.size}")
            for link, target in sorted(view.symlinks.items()):
                print(f"l {link} -> {target}")
            return

        summaries = vault.list_backups()

    if not summaries:
        print("No backups.")
        return

    print("Backups:")
    for summary in summaries:
        print(f"- {summary['name']}")
        if summary['files']:
            print(f"  files:       {summary['files']}")
        if summary['directories']:
            print(f"  directories: {summary['directories']}")
        if summary['symlinks']:
            print(f"  symlinks:    {summary['symlinks']}")


def mount_command(args: argparse.Namespace) -> None:
    """Recreate a backup as symlinks under an empty directory."""
    with open_vault(args) as vault:
        counts = mount_backup(vault, args.backup_name, args.mount_point)
    print(
        f"Mounted {args.backup_name!r} at {args.mount_point}: "
        f"{counts['files']} files, {counts['directories']} directories, "
        f"{counts['symlinks']} symlinks"
    )


def gc_command(args: argparse.Namespace) -> None:
    """Delete blocks no backup references."""
    with open_vault(args) as vault:
        result = vault.garbage_collect(dry_run=args.dry_run)

    if args.dry_run:
        print(f"Would delete {len(result['unreachable'])} blocks.")
    else:
        print(f"Deleted {len(result['deleted'])} blocks.")
    for path in result['stray']:
        print(f"Stray file in store: {path}")
    for error in result['errors']:
        print(f"Error: {error}", file=sys.stderr)


def verify_command(args: argparse.Namespace) -> None:
    """Verify stored blocks; exits 1 if anything is wrong."""
    with open_vault(args) as vault:
        result = vault.verify()

    if result['valid']:
        print(f"Vault integrity check passed. {result['verified']} blocks verified.")
        return

    print("\nVault integrity check FAILED.\n")
    for block_hash in result['corrupted']:
        print(f"Corrupted block: {block_hash}")
    for block_hash in result['missing']:
        print(f"Missing block:   {block_hash}")
    for error in result['errors']:
        print(f"  {error}")
    sys.exit(1)


def forget_command(args: argparse.Namespace) -> None:
    """Remove a backup from the database."""
    with open_vault(args) as vault:
        vault.forget(args.backup_name)
    print(f"Backup {args.backup_name!r} forgotten. Run 'gc' to reclaim space.")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="backup-vault",
        description="Deduplicating, content-addressed file backups",
    )
    parser.add_argument(
        "-C", "--vault-dir",
        default=None,
        help="Vault directory (default: $VAULT_DIR, then the current directory)",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="count",
        default=0,
        help="Increase log output (repeat for debug)",
    )
    parser.add_argument(
        "--lock-timeout",
        type=float,
        default=None,
        help="Seconds to wait for another writer before giving up",
    )
    parser.add_argument(
        "--no-wait",
        action="store_true",
        help="Fail immediately if the vault is locked",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to execute")

    subparsers.add_parser("init", help="Create an empty vault")

    backup_parser = subparsers.add_parser("backup", help="Back up a directory")
    backup_parser.add_argument("backup_name", help="Name of the backup")
    backup_parser.add_argument("source_dir", help="Directory to back up")

    list_parser = subparsers.add_parser("list", help="List backups")
    list_parser.add_argument("backup_name", nargs="?", default=None, help="Show one backup in full")

    mount_parser = subparsers.add_parser("mount", help="Recreate a backup as symlinks")
    mount_parser.add_argument("backup_name", help="Name of the backup")
    mount_parser.add_argument("mount_point", help="Empty directory to populate")

    gc_parser = subparsers.add_parser("gc", help="Delete unreferenced blocks")
    gc_parser.add_argument("--dry-run", action="store_true", help="Only report what would be deleted")

    subparsers.add_parser("verify", help="Check stored content against its hashes")

    forget_parser = subparsers.add_parser("forget", help="Remove a backup")
    forget_parser.add_argument("backup_name", help="Name of the backup")

    return parser


def main(argv: Optional[List[str]] = None) -> None:
    """
    Main entry point for the command line interface.
    Parses arguments and dispatches to appropriate command handlers.
    """
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.verbose)

    command_handlers = {
        "init": init_command,
        "backup": backup_command,
        "list": list_command,
        "mount": mount_command,
        "gc": gc_command,
        "verify": verify_command,
        "forget": forget_command,
    }

    if args.command not in command_handlers:
        parser.print_help()
        sys.exit(1)

    try:
        command_handlers[args.command](args)
    except VaultError as e:
        print_error_and_exit(str(e))
    except OSError as e:
        print_error_and_exit(f"OS error: {e}")


if __name__ == "__main__":
    main()
