"""Command line entry point.

Workflow:
    1. deckporter export --deck-name "Periodic Table" --owner alice       # API -> data/<deck_id>/
    2. deckporter import --old-deck-id 1234 --host target.example.com     # data/1234/ -> API
       or: deckporter import --old-deck-id 1234 --responses true         # ... plus study history
       or: deckporter import --old-deck-id 1234 --responses only --existing-deck-id 98
    3. deckporter delete --deck-name "Periodic Table" --owner alice
       or: deckporter delete --card-id 4567
    4. deckporter batch plan.json5                                       # import into many environments
"""

import argparse
import sys
import traceback

from deckporter import __version__
from deckporter.batch import load_plan, run_batch
from deckporter.bundle import RESPONSES_ONLY, parse_responses_mode
from deckporter.client import ApiClient, Deadline
from deckporter.config import Settings, load_env_files, prompt_password
from deckporter.delete import delete_card, delete_deck
from deckporter.errors import ValidationError
from deckporter.export import export_deck
from deckporter.importer import import_bundle
from deckporter.reporter import Reporter, close_logging, configure_logging


def responses_mode(value):
    """argparse type for --responses."""
    try:
        return parse_responses_mode(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e))


def _connection_parser():
    parser = argparse.ArgumentParser(add_help=False)
    parser.add_argument("-p", "--path", default=None,
                        help="Top directory holding data/ and logs/ (default: current directory)")
    parser.add_argument("-u", "--user", default=None, help="User to sign in as (default: test_admin)")
    parser.add_argument("-w", "--password", default=None,
                        help="Sign-in password (default: ADMIN_PASSWORD, else prompt)")
    parser.add_argument("-s", "--host", default=None, help="API host (default: HOST_OVERRIDE or localhost)")
    parser.add_argument("-t", "--port", default=None, help="API port, or 'none' for no port")
    parser.add_argument("-l", "--protocol", default=None, help="http or https")
    parser.add_argument("--target-env", default=None,
                        help="development | test | production (default: TEST_TARGET_ENV)")
    parser.add_argument("-o", "--owner", default=None, help="Username of the deck owner")
    parser.add_argument("-a", "--test-auto", default=None, help="Tag stamped on every created record")
    parser.add_argument("--log-dir", default=None, help="Subdirectory of logs/ for this run")
    parser.add_argument("--deadline", type=float, default=None,
                        help="Give up after this many seconds")
    parser.add_argument("-v", "--verbose", action="store_true", help="Echo detailed progress")
    return parser


def parse_args(argv=None):
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(description="Move decks between deck API environments")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    subparsers = parser.add_subparsers(dest="command", help="Command to execute")
    common = _connection_parser()

    import_parser = subparsers.add_parser("import", parents=[common], help="Import a bundle into the API")
    import_parser.add_argument("-i", "--old-deck-id", default=None,
                               help="Bundle directory name under data/ (the exported deck id)")
    import_parser.add_argument("-f", "--file", default=None, help="Explicit bundle directory")
    import_parser.add_argument("-d", "--deck-name", default=None, help="Name for the new deck")
    import_parser.add_argument("-r", "--responses", type=responses_mode, default="none",
                               help="none (default), true, or only")
    import_parser.add_argument("--rename-conflict", action="store_true",
                               help="Rename the owner's existing deck with the same name. "
                                    "This modifies that existing deck.")
    import_parser.add_argument("--existing-deck-id", default=None,
                               help="Existing deck the responses attach to (--responses only)")

    export_parser = subparsers.add_parser("export", parents=[common], help="Export a deck to a bundle")
    export_parser.add_argument("-d", "--deck-name", required=True, help="Exact name of the deck")
    export_parser.add_argument("-r", "--responses", type=responses_mode, default="none",
                               help="none (default), true, or only")

    delete_parser = subparsers.add_parser("delete", parents=[common],
                                          help="Delete a deck or a card, with its assets")
    target = delete_parser.add_mutually_exclusive_group(required=True)
    target.add_argument("-d", "--deck-name", default=None, help="Exact name of the deck")
    target.add_argument("-c", "--card-id", default=None, help="Id of a single card")

    batch_parser = subparsers.add_parser("batch", help="Import into several environments in parallel")
    batch_parser.add_argument("plan", help="JSON5 plan file listing the environments")
    batch_parser.add_argument("-p", "--path", default=None, help="Top directory passed to each import")

    return parser.parse_args(argv)


def connect(settings):
    """Sign in to the API described by settings."""
    client = ApiClient(settings.api_url, deadline=Deadline(settings.deadline))
    password = settings.password or prompt_password(settings.user, settings.host)
    client.sign_in(settings.user, password)
    return client


def run_import(args, settings, client, reporter):
    if args.file:
        bundle_dir = args.file
    elif args.old_deck_id:
        bundle_dir = settings.data_path / args.old_deck_id
    else:
        raise ValidationError("Either --old-deck-id or --file must be specified")

    if args.existing_deck_id and args.responses != RESPONSES_ONLY:
        reporter.warn("--existing-deck-id is only used with --responses only")

    owner = client.find_user(settings.owner) if settings.owner else None
    reporter.report(f"Importing {bundle_dir} into {settings.api_url}")
    return import_bundle(
        client,
        bundle_dir,
        owner=owner,
        responses=args.responses,
        existing_deck_id=args.existing_deck_id,
        deck_name=args.deck_name,
        rename_conflict=args.rename_conflict,
        test_auto=settings.test_auto,
        reporter=reporter,
    )


def run_export(args, settings, client, reporter):
    result = export_deck(
        client,
        settings.owner or settings.user,
        args.deck_name,
        settings.data_path,
        responses=args.responses,
        reporter=reporter,
    )
    print(f"\nBundle written to {result.directory}")
    print("To import it elsewhere:")
    print(f"  deckporter import --old-deck-id {result.deck_id} --host <target host>")
    return result


def run_delete(args, settings, client, reporter):
    if args.deck_name:
        return delete_deck(client, settings.owner or settings.user, args.deck_name, reporter)
    return delete_card(client, args.card_id, reporter)


COMMANDS = {
    'import': run_import,
    'export': run_export,
    'delete': run_delete,
}


def run_batch_command(args):
    codes = run_batch(load_plan(args.plan), path=args.path)
    failed = [name for name, code in codes.items() if code != 0]
    if failed:
        print(f"\n❌ Batch import failed for: {', '.join(failed)}", file=sys.stderr)
        return 1
    print(f"\n✓ Batch import completed: {len(codes)} environment(s) processed")
    return 0


def main(argv=None):
    args = parse_args(argv)

    if args.command is None:
        print("No command specified. Use --help to see available commands.")
        print(__doc__)
        return 0

    load_env_files()

    if args.command == 'batch':
        return run_batch_command(args)

    settings = Settings.from_namespace(args)
    reporter = Reporter(verbose=settings.verbose)

    try:
        log_path = configure_logging(settings.log_path)
        print(f"Logs being written to: {log_path}")
        reporter.verbose(f"Using api url of {settings.api_url}")

        client = connect(settings)
        COMMANDS[args.command](args, settings, client, reporter)
    except Exception as e:
        reporter.fail(str(e))
        traceback.print_exc(file=sys.stderr)
        return 1
    finally:
        close_logging()

    return 0


def run():
    sys.exit(main())
