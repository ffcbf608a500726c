"""
Command-line interface for batch document translation
"""
import argparse
import asyncio
import json
import sys

from bookbatch.config import (
    BATCH_SIZE,
    DATABASE_PATH,
    DEFAULT_SOURCE_LANGUAGE,
    DEFAULT_TARGET_LANGUAGE,
    LLM_API_KEY,
    LLM_MODEL,
    LLM_SERVERS,
    LLM_VALIDATION_MODEL,
    PAUSE_SNOOZE_SECONDS,
    SEGMENT_MAX_CHARS,
    SEGMENT_MAX_UNITS,
    WORKER_CONCURRENCY,
    BatchConfig,
)
from bookbatch.core.exceptions import BookBatchError
from bookbatch.core.llm.endpoint_pool import EndpointPool, split_urls
from bookbatch.core.llm.model_client import ModelClient
from bookbatch.core.llm.selector import EndpointConfig
from bookbatch.core.markup.segmenter import STRATEGY_FILE, STRATEGY_WINDOW
from bookbatch.persistence.checkpoint_manager import CheckpointManager
from bookbatch.project_service import ProjectService
from bookbatch.utils.unified_logger import Colors, setup_cli_logger


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Translate a directory of XHTML/HTML documents with an LLM, resumably.")
    parser.add_argument("--db", default=DATABASE_PATH, help=f"SQLite database path (default: {DATABASE_PATH}).")
    parser.add_argument("--no-color", action="store_true", help="Disable colored output.")

    sub = parser.add_subparsers(dest="command", required=True)

    prepare = sub.add_parser("prepare", help="Segment a document directory into a new project.")
    prepare.add_argument("source", help="Directory holding the extracted documents.")
    prepare.add_argument("-p", "--project", required=True, help="Project name.")
    prepare.add_argument("-sl", "--source_lang", default=DEFAULT_SOURCE_LANGUAGE, help=f"Source language (default: {DEFAULT_SOURCE_LANGUAGE}).")
    prepare.add_argument("-tl", "--target_lang", default=DEFAULT_TARGET_LANGUAGE, help=f"Target language (default: {DEFAULT_TARGET_LANGUAGE}).")
    prepare.add_argument("--strategy", default=STRATEGY_FILE, choices=[STRATEGY_FILE, STRATEGY_WINDOW], help="Grouping strategy (default: file).")
    prepare.add_argument("--max-units", type=int, default=SEGMENT_MAX_UNITS, help=f"Units per window (default: {SEGMENT_MAX_UNITS}).")
    prepare.add_argument("--max-chars", type=int, default=SEGMENT_MAX_CHARS, help=f"Characters per window (default: {SEGMENT_MAX_CHARS}).")

    start = sub.add_parser("start", help="Start or resume translation (enqueues group jobs).")
    start.add_argument("-p", "--project", required=True, help="Project name.")
    start.add_argument("--servers", default=LLM_SERVERS, help="Comma-separated LLM server URLs.")
    start.add_argument("-m", "--model", default=LLM_MODEL, help="Translation model.")
    start.add_argument("--validation-model", default=LLM_VALIDATION_MODEL, help="Validation model (default: same as --model).")
    start.add_argument("--api_key", default=LLM_API_KEY, help="API key for the LLM servers.")
    start.add_argument("--new-run", action="store_true", help="Start a fresh run from the first unit.")

    for name, help_text in (("pause", "Pause a running project."),
                            ("status", "Show project progress."),
                            ("heal", "Re-run the auto-healer over stored translations."),
                            ("retranslate-dirty", "Re-translate units marked dirty.")):
        command = sub.add_parser(name, help=help_text)
        command.add_argument("-p", "--project", required=True, help="Project name.")

    for name, help_text in (("scan-similarity", "Mark translations too similar to their source as dirty."),
                            ("validate", "Ask the model to confirm suspicious translations.")):
        command = sub.add_parser(name, help=help_text)
        command.add_argument("-p", "--project", required=True, help="Project name.")
        command.add_argument("--search", default=None, help="Only scan units whose source contains this text.")

    work = sub.add_parser("work", help="Run queued jobs until none remain.")
    work.add_argument("-bs", "--batch_size", type=int, default=BATCH_SIZE, help=f"Units per job step (default: {BATCH_SIZE}).")
    work.add_argument("-c", "--concurrency", type=int, default=WORKER_CONCURRENCY, help=f"Jobs executed at once (default: {WORKER_CONCURRENCY}).")
    work.add_argument("--max-idle", type=float, default=PAUSE_SNOOZE_SECONDS * 6, help="Exit when the next job is further away than this many seconds.")

    export = sub.add_parser("export", help="Reassemble translated documents into a directory.")
    export.add_argument("output", help="Output directory.")
    export.add_argument("-p", "--project", required=True, help="Project name.")
    export.add_argument("--allow-missing", action="store_true", help="Keep source markup for untranslated units.")

    return parser


def project_id_for(service: ProjectService, name: str) -> int:
    project = service.checkpoint.find_project(name)
    if project is None:
        raise BookBatchError(f"Unknown project '{name}'")
    return project["id"]


def endpoint_configs_from_args(args):
    """Explicit endpoint configs from CLI flags, or None to fall back to the environment."""
    if not args.servers or not args.model:
        return None
    translate_config = EndpointConfig(model=args.model, base_urls=split_urls(args.servers), api_key=args.api_key or "")
    validation_config = EndpointConfig(model=args.validation_model or args.model, base_urls=split_urls(args.servers),
                                       api_key=args.api_key or "")
    return {"translate": translate_config, "validation": validation_config}


async def run_jobs(service: ProjectService, batch_config: BatchConfig, max_idle=None):
    pool = EndpointPool()
    client = ModelClient(pool,
                         timeout=batch_config.timeout,
                         source_language=batch_config.source_language,
                         target_language=batch_config.target_language)
    try:
        runner = service.build_runner(client, batch_config)
        return await runner.run_until_idle(max_idle=max_idle)
    finally:
        await client.close()
        await pool.close()


def print_status(status):
    project = status["project"]
    print(f"{Colors.WHITE}{project['name']}{Colors.ENDC} [{project['status']}] "
          f"{project['source_language']} -> {project['target_language']}: {status['progress']}%")
    for group in status["groups"]:
        print(f"  {group['group_key']:<40} {group['status']:<8} "
              f"{group['cursor']:>4}/{group['unit_count']:<4} {group['progress']:>3}%")
    if status["dirty_units"]:
        print(f"{Colors.YELLOW}{status['dirty_units']} dirty unit(s){Colors.ENDC}")


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logger = setup_cli_logger(enable_colors=not args.no_color)

    checkpoint = CheckpointManager(args.db)
    service = ProjectService(checkpoint)

    try:
        if args.command == "prepare":
            summary = service.prepare(args.source, args.project,
                                      source_language=args.source_lang,
                                      target_language=args.target_lang,
                                      strategy=args.strategy,
                                      max_units=args.max_units,
                                      max_chars=args.max_chars)
            print(json.dumps(summary, indent=2))

        elif args.command == "start":
            result = service.start(project_id_for(service, args.project),
                                   llm_configs=endpoint_configs_from_args(args),
                                   new_run=args.new_run)
            logger.info(f"Run {result['run_id']}: {result['enqueued']} group job(s) queued. "
                        f"Run 'work' to process them.")

        elif args.command == "pause":
            service.pause(project_id_for(service, args.project))

        elif args.command == "status":
            print_status(service.status(project_id_for(service, args.project)))

        elif args.command == "work":
            batch_config = BatchConfig.from_cli_args(args)
            stats = asyncio.run(run_jobs(service, batch_config, max_idle=args.max_idle))
            logger.info(f"Executed {stats['jobs']} job step(s)")

        elif args.command in ("scan-similarity", "validate", "heal", "retranslate-dirty"):
            project_id = project_id_for(service, args.project)
            if args.command == "scan-similarity":
                service.scan_similarity(project_id, search=args.search)
            elif args.command == "validate":
                service.validate(project_id, search=args.search)
            elif args.command == "heal":
                service.heal(project_id)
            else:
                service.retranslate_dirty(project_id)
            asyncio.run(run_jobs(service, BatchConfig(), max_idle=0))

        elif args.command == "export":
            output = service.export(project_id_for(service, args.project), args.output,
                                    allow_missing=args.allow_missing)
            logger.info(f"Exported to {output}")

    except (BookBatchError, ValueError, FileNotFoundError) as e:
        logger.error(str(e))
        return 1
    except KeyboardInterrupt:
        logger.warning("Interrupted; progress is saved at each group cursor.")
        return 130
    finally:
        checkpoint.close()

    return 0


if __name__ == "__main__":
    sys.exit(main())
