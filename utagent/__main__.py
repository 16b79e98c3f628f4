"""Command-line entry point.

Usage:
    python -m utagent run --config agent.yaml --project . --target src/app.py
    python -m utagent run --config agent.yaml --project . --target src/app.py --stream -v
    python -m utagent check --config agent.yaml
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

import jinja2
import yaml  # type: ignore[import-untyped]

from utagent.config import AppConfig, load_config
from utagent.errors import AgentError, ConfigurationError, failure_kind_for, is_retryable
from utagent.executor import build_executor
from utagent.fs_tools import FileSystemTools
from utagent.governance import GovernanceInterceptor
from utagent.messages import UserTurn
from utagent.prompts import DEFAULT_TEMPLATE, render_prompt, split_prompt
from utagent.providers import create_adapter
from utagent.retry import RetryPolicy, run_agent_with_retry, run_sync_with_retry
from utagent.streaming import ConsoleStreamHandler
from utagent.tool_registry import ToolRegistry

logger = logging.getLogger("utagent")

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CONFIG = 2


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def build_registry(config: AppConfig, project: Path) -> ToolRegistry:
    registry = ToolRegistry(interceptor=GovernanceInterceptor(config.governance))
    registry.register(FileSystemTools(project))
    return registry


def cmd_run(args: argparse.Namespace) -> int:
    config = load_config(args.config)
    project = Path(args.project).resolve()
    template = Path(args.template or config.prompts.system or DEFAULT_TEMPLATE)
    try:
        turns = render_prompt(
            template,
            target_file=args.target,
            test_dir=args.test_dir,
            language=args.language,
        )
    except (OSError, ValueError, yaml.YAMLError, jinja2.TemplateError) as exc:
        raise ConfigurationError(f"Cannot render prompt template {template}: {exc}", original=exc) from exc
    system_prompt, user_text = split_prompt(turns)

    registry = build_registry(config, project)
    stream_handler = ConsoleStreamHandler() if args.stream else None
    policy = RetryPolicy.from_workflow(config.workflow)

    result = run_agent_with_retry(
        lambda: build_executor(config, registry, system_prompt, stream_handler=stream_handler),
        user_text,
        policy,
    )
    print(result.summary())
    if result.text and not args.stream:
        print(result.text)
    return EXIT_OK if result.success else EXIT_FAILED


def cmd_check(args: argparse.Namespace) -> int:
    config = load_config(args.config)
    policy = RetryPolicy.from_workflow(config.workflow)
    with create_adapter(config.llm) as adapter:
        try:
            reply = run_sync_with_retry(
                caller="check",
                max_retries=policy.max_retries,
                invoke=lambda _attempt: adapter.chat([UserTurn("Hi")]),
                should_retry=lambda exc: is_retryable(failure_kind_for(exc)),
                compute_delay=policy.delay,
            )
        except AgentError as exc:
            print(f"FAILED {adapter.name} ({adapter.model}): {exc}")
            return EXIT_FAILED
    print(f"OK {adapter.name} ({adapter.model}): {reply.text[:80]!r}")
    return EXIT_OK


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        prog="utagent",
        description="Drive an LLM through a tool-calling loop to write unit tests",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command", help="Available commands")

    # run
    run_p = sub.add_parser("run", help="Generate tests for one source file")
    run_p.add_argument("--config", help="YAML configuration file")
    run_p.add_argument("--project", default=".", help="Project root the file tools are confined to")
    run_p.add_argument("--target", required=True, help="Source file to test, relative to the project")
    run_p.add_argument("--test-dir", help="Directory the tests should go in")
    run_p.add_argument("--language", help="Project language, used in the prompt")
    run_p.add_argument("--template", help="Prompt template (YAML) overriding the configured one")
    run_p.add_argument("--stream", action="store_true", help="Stream model output to the console")

    # check
    check_p = sub.add_parser("check", help="Send a short request to verify provider settings")
    check_p.add_argument("--config", help="YAML configuration file")

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(EXIT_FAILED)

    _configure_logging(args.verbose)
    try:
        if args.command == "run":
            code = cmd_run(args)
        else:
            code = cmd_check(args)
    except ConfigurationError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        code = EXIT_CONFIG
    sys.exit(code)


if __name__ == "__main__":
    main()
