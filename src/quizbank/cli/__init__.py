"""Command-line interface for the QuizBank ingestion pipeline."""

import argparse
import json
import logging
import os
import sys
from pathlib import Path

from dotenv import load_dotenv

from quizbank.api import QuizBankAPI
from quizbank.models import Actor, BusinessKind, DocumentStatus, ProviderFamily


def setup_logging(verbose: bool = False) -> None:
    """Configure logging for CLI.

    Args:
        verbose: Enable verbose (DEBUG) logging
    """
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def create_api() -> QuizBankAPI:
    """Create the API facade from environment configuration.

    Returns:
        Initialized QuizBankAPI instance
    """
    # Load .env file if it exists
    load_dotenv()
    return QuizBankAPI()


def actor_from_args(args: argparse.Namespace) -> Actor:
    return Actor(user_id=args.user_id, role=args.role)


def print_status(report) -> None:
    print(f"\nDocument {report.document_id}")
    print(f"  Status:          {report.status.value}")
    print(f"  Total Questions: {report.total_questions}")
    print(f"  Parse Method:    {report.parse_method or '-'}")
    if report.latest_log:
        log = report.latest_log
        print(f"  Last Attempt:    {log['status']} at {log['created_at']}")
        print(f"  Processing Time: {log['processing_time_ms']} ms")
        if log.get("error_message"):
            print(f"  Error:           {log['error_message']}")
    print()


def cmd_init_db(args: argparse.Namespace) -> int:
    """Create database tables.

    Args:
        args: Command-line arguments

    Returns:
        Exit code (0 for success, 1 for failure)
    """
    setup_logging(args.verbose)
    logger = logging.getLogger(__name__)

    api = create_api()
    try:
        api.init_db()
        Path(api.config.upload_dir).mkdir(parents=True, exist_ok=True)
        logger.info(f"Database ready at {api.config.database_url}")
        return 0
    except Exception as e:
        logger.error(f"Error creating tables: {e}", exc_info=args.verbose)
        return 1
    finally:
        api.close()


def cmd_provider_add(args: argparse.Namespace) -> int:
    """Register an AI provider."""
    setup_logging(args.verbose)
    logger = logging.getLogger(__name__)

    api = create_api()
    try:
        provider = api.add_provider(
            name=args.name,
            family=args.family,
            endpoint=args.endpoint,
            api_key=args.api_key or os.getenv("QUIZBANK_PROVIDER_API_KEY", ""),
            description=args.description,
            is_active=not args.inactive,
        )
        logger.info(f"Registered provider {provider.id}: {provider.name} ({provider.family.value})")
        return 0
    except Exception as e:
        logger.error(f"Error registering provider: {e}", exc_info=args.verbose)
        return 1
    finally:
        api.close()


def cmd_provider_list(args: argparse.Namespace) -> int:
    """List registered providers."""
    setup_logging(args.verbose)
    logger = logging.getLogger(__name__)

    api = create_api()
    try:
        providers = api.list_providers()
        if not providers:
            print("No providers registered")
            return 0

        print(f"\n{'ID':>4}  {'Name':<20} {'Family':<8} {'Active':<7} Endpoint")
        print("-" * 72)
        for p in providers:
            active = "yes" if p.is_active else "no"
            print(f"{p.id:>4}  {p.name:<20} {p.family.value:<8} {active:<7} {p.endpoint}")
        print()
        return 0
    except Exception as e:
        logger.error(f"Error listing providers: {e}", exc_info=args.verbose)
        return 1
    finally:
        api.close()


def cmd_provider_set_active(args: argparse.Namespace) -> int:
    """Enable or disable a provider."""
    setup_logging(args.verbose)
    logger = logging.getLogger(__name__)

    api = create_api()
    try:
        provider = api.set_provider_active(args.provider_id, args.active)
        state = "enabled" if provider.is_active else "disabled"
        logger.info(f"Provider {provider.id} ({provider.name}) {state}")
        return 0
    except Exception as e:
        logger.error(f"Error updating provider: {e}", exc_info=args.verbose)
        return 1
    finally:
        api.close()


def cmd_prompt_set(args: argparse.Namespace) -> int:
    """Store a custom system prompt for a business kind."""
    setup_logging(args.verbose)
    logger = logging.getLogger(__name__)

    if args.file:
        prompt_file = Path(args.file)
        if not prompt_file.exists():
            logger.error(f"File not found: {prompt_file}")
            return 1
        prompt = prompt_file.read_text(encoding="utf-8")
    else:
        prompt = args.text

    api = create_api()
    try:
        api.set_prompt(prompt, kind=args.kind, actor=actor_from_args(args))
        if prompt:
            logger.info(f"Saved custom prompt for {args.kind} ({len(prompt)} chars)")
        else:
            logger.info(f"Cleared custom prompt for {args.kind}, default prompt will be used")
        return 0
    except Exception as e:
        logger.error(f"Error saving prompt: {e}", exc_info=args.verbose)
        return 1
    finally:
        api.close()


def cmd_prompt_show(args: argparse.Namespace) -> int:
    """Show the custom system prompt for a business kind."""
    setup_logging(args.verbose)
    logger = logging.getLogger(__name__)

    api = create_api()
    try:
        prompt = api.get_prompt(args.kind)
        print(prompt if prompt else f"(no custom prompt for {args.kind}, default is used)")
        return 0
    except Exception as e:
        logger.error(f"Error reading prompt: {e}", exc_info=args.verbose)
        return 1
    finally:
        api.close()


def cmd_upload(args: argparse.Namespace) -> int:
    """Upload a source file as a new pending document."""
    setup_logging(args.verbose)
    logger = logging.getLogger(__name__)

    file_path = Path(args.file_path)
    if not file_path.exists():
        logger.error(f"File not found: {file_path}")
        return 1

    api = create_api()
    try:
        document = api.upload(
            file_path,
            owner=actor_from_args(args),
            name=args.name,
            description=args.description,
            business_kind=args.kind,
        )
        logger.info(f"Uploaded {file_path.name} as document {document.id}")
        print(document.id)
        return 0
    except Exception as e:
        logger.error(f"Error uploading file: {e}", exc_info=args.verbose)
        return 1
    finally:
        api.close()


def cmd_parse(args: argparse.Namespace) -> int:
    """Parse a document with a provider and model."""
    setup_logging(args.verbose)
    logger = logging.getLogger(__name__)

    api = create_api()
    try:
        if args.retry:
            result = api.retry_parse(args.document_id)
        else:
            if args.provider is None or not args.model:
                logger.error("--provider and --model are required unless --retry is given")
                return 1
            result = api.trigger_parse(args.document_id, args.provider, args.model)

        logger.info(result.message)
        if not result.started:
            return 0

        logger.info(f"Task {result.task_id} queued")
        if args.wait:
            report = api.wait_for_parse(args.document_id, timeout=args.timeout)
            print_status(report)
            return 0 if report.status == DocumentStatus.COMPLETED else 1
        return 0
    except Exception as e:
        logger.error(f"Error starting parse: {e}", exc_info=args.verbose)
        return 1
    finally:
        # Pending tasks finish before the process exits
        api.close()


def cmd_status(args: argparse.Namespace) -> int:
    """Show the parse status of a document."""
    setup_logging(args.verbose)
    logger = logging.getLogger(__name__)

    api = create_api()
    try:
        report = api.get_parse_status(args.document_id)
        if args.json:
            print(json.dumps(report.model_dump(mode="json"), ensure_ascii=False, indent=2))
        else:
            print_status(report)
        return 0
    except Exception as e:
        logger.error(f"Error reading status: {e}", exc_info=args.verbose)
        return 1
    finally:
        api.close()


def cmd_set_status(args: argparse.Namespace) -> int:
    """Override the status of a document."""
    setup_logging(args.verbose)
    logger = logging.getLogger(__name__)

    api = create_api()
    try:
        api.override_status(args.document_id, args.status, actor_from_args(args))
        logger.info(f"Document {args.document_id} set to {args.status}")
        return 0
    except Exception as e:
        logger.error(f"Error setting status: {e}", exc_info=args.verbose)
        return 1
    finally:
        api.close()


def cmd_chapters(args: argparse.Namespace) -> int:
    """List the chapters of a parsed document."""
    setup_logging(args.verbose)
    logger = logging.getLogger(__name__)

    api = create_api()
    try:
        stats = api.get_chapter_stats(args.document_id)

        print(f"\nDocument {args.document_id}: {stats['total_chapters']} chapters, "
              f"{stats['total_questions']} questions")
        print("-" * 60)
        for chapter in stats["chapters"]:
            print(
                f"  {chapter['chapter_order']:>3}. {chapter['chapter_name']:<40} "
                f"{chapter['question_count']:>5d}"
            )
        print()
        return 0
    except Exception as e:
        logger.error(f"Error listing chapters: {e}", exc_info=args.verbose)
        return 1
    finally:
        api.close()


def cmd_delete(args: argparse.Namespace) -> int:
    """Delete a document and everything derived from it."""
    setup_logging(args.verbose)
    logger = logging.getLogger(__name__)

    api = create_api()
    try:
        api.delete_document(args.document_id, actor_from_args(args))
        logger.info(f"Deleted document {args.document_id}")
        return 0
    except Exception as e:
        logger.error(f"Error deleting document: {e}", exc_info=args.verbose)
        return 1
    finally:
        api.close()


def main(argv=None) -> int:
    """Main CLI entry point.

    Args:
        argv: Argument list, defaults to sys.argv

    Returns:
        Exit code
    """
    load_dotenv()

    parser = argparse.ArgumentParser(
        description="QuizBank: parse uploaded documents into chaptered question banks",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Enable verbose (DEBUG) logging"
    )
    parser.add_argument(
        "--user-id",
        type=int,
        default=int(os.getenv("QUIZBANK_USER_ID", "1")),
        help="Acting user id (default: $QUIZBANK_USER_ID or 1)",
    )
    parser.add_argument(
        "--role",
        default=os.getenv("QUIZBANK_USER_ROLE", "user"),
        help="Acting user role, e.g. user, admin, super_admin",
    )

    kinds = [k.value for k in BusinessKind]
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # init-db command
    parser_init = subparsers.add_parser("init-db", help="Create database tables")
    parser_init.set_defaults(func=cmd_init_db)

    # provider command group
    parser_provider = subparsers.add_parser("provider", help="Provider registry commands")
    provider_subparsers = parser_provider.add_subparsers(
        dest="provider_command", help="Provider subcommands"
    )

    parser_provider_add = provider_subparsers.add_parser("add", help="Register a provider")
    parser_provider_add.add_argument("name", help="Unique provider name")
    parser_provider_add.add_argument(
        "--family", required=True, choices=[f.value for f in ProviderFamily]
    )
    parser_provider_add.add_argument("--endpoint", required=True, help="API endpoint URL")
    parser_provider_add.add_argument(
        "--api-key", help="API key (default: $QUIZBANK_PROVIDER_API_KEY)"
    )
    parser_provider_add.add_argument("--description", help="Free-text description")
    parser_provider_add.add_argument(
        "--inactive", action="store_true", help="Register the provider as inactive"
    )
    parser_provider_add.set_defaults(func=cmd_provider_add)

    parser_provider_list = provider_subparsers.add_parser("list", help="List providers")
    parser_provider_list.set_defaults(func=cmd_provider_list)

    parser_provider_disable = provider_subparsers.add_parser("disable", help="Disable a provider")
    parser_provider_disable.add_argument("provider_id", type=int)
    parser_provider_disable.set_defaults(func=cmd_provider_set_active, active=False)

    parser_provider_enable = provider_subparsers.add_parser("enable", help="Enable a provider")
    parser_provider_enable.add_argument("provider_id", type=int)
    parser_provider_enable.set_defaults(func=cmd_provider_set_active, active=True)

    # prompt command group
    parser_prompt = subparsers.add_parser("prompt", help="Custom system prompt commands")
    prompt_subparsers = parser_prompt.add_subparsers(
        dest="prompt_command", help="Prompt subcommands"
    )

    parser_prompt_set = prompt_subparsers.add_parser(
        "set", help="Store a custom prompt (omit --text/--file to clear it)"
    )
    parser_prompt_set.add_argument("--kind", choices=kinds, default=BusinessKind.QUESTION_BANK.value)
    prompt_source = parser_prompt_set.add_mutually_exclusive_group()
    prompt_source.add_argument("--text", help="Prompt text")
    prompt_source.add_argument("--file", help="Read the prompt from a file")
    parser_prompt_set.set_defaults(func=cmd_prompt_set)

    parser_prompt_show = prompt_subparsers.add_parser("show", help="Show the custom prompt")
    parser_prompt_show.add_argument(
        "--kind", choices=kinds, default=BusinessKind.QUESTION_BANK.value
    )
    parser_prompt_show.set_defaults(func=cmd_prompt_show)

    # upload command
    parser_upload = subparsers.add_parser("upload", help="Upload a source document")
    parser_upload.add_argument("file_path", help="Text, image or PDF file")
    parser_upload.add_argument("--name", help="Display name (default: file name)")
    parser_upload.add_argument("--description", help="Description")
    parser_upload.add_argument("--kind", choices=kinds, default=BusinessKind.QUESTION_BANK.value)
    parser_upload.set_defaults(func=cmd_upload)

    # parse command
    parser_parse = subparsers.add_parser("parse", help="Parse a document with an AI provider")
    parser_parse.add_argument("document_id", type=int)
    parser_parse.add_argument("--provider", type=int, help="Provider id")
    parser_parse.add_argument("--model", help="Model name, e.g. gpt-4o")
    parser_parse.add_argument(
        "--retry", action="store_true", help="Retry a failed document with its last provider/model"
    )
    parser_parse.add_argument(
        "--wait", action="store_true", help="Wait for the result and print the final status"
    )
    parser_parse.add_argument(
        "--timeout", type=float, default=None, help="Seconds to wait with --wait"
    )
    parser_parse.set_defaults(func=cmd_parse)

    # status command
    parser_status = subparsers.add_parser("status", help="Show document parse status")
    parser_status.add_argument("document_id", type=int)
    parser_status.add_argument("--json", action="store_true", help="Print as JSON")
    parser_status.set_defaults(func=cmd_status)

    # set-status command
    parser_set_status = subparsers.add_parser(
        "set-status", help="Override document status (owner or admin)"
    )
    parser_set_status.add_argument("document_id", type=int)
    parser_set_status.add_argument("status", choices=[s.value for s in DocumentStatus])
    parser_set_status.set_defaults(func=cmd_set_status)

    # chapters command
    parser_chapters = subparsers.add_parser("chapters", help="List document chapters")
    parser_chapters.add_argument("document_id", type=int)
    parser_chapters.set_defaults(func=cmd_chapters)

    # delete command
    parser_delete = subparsers.add_parser("delete", help="Delete a document (owner or admin)")
    parser_delete.add_argument("document_id", type=int)
    parser_delete.set_defaults(func=cmd_delete)

    args = parser.parse_args(argv)

    if not hasattr(args, "func"):
        parser.print_help()
        return 1

    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
