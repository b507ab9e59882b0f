"""CLI entry point for the preload harness.

Provides ``main()`` as the console-script entry point registered in
``pyproject.toml`` as ``preload-harness = "preload_harness.cli:main"``.
Subcommands:

- ``run``: run one command against a target root and print its dump.
- ``children``: print the child pids of a process.
- ``await``: block until a set of processes has exited.
"""

from __future__ import annotations

import argparse
import shlex
import sys

from preload_harness.config import configure_logging, load_config
from preload_harness.errors import CommandFailedError
from preload_harness.process_tree import children_of
from preload_harness.reload import await_pids
from preload_harness.runner import DEFAULT, CommandRunner


def _build_parser() -> argparse.ArgumentParser:
    """Build the CLI argument parser.

    Returns:
        Configured ``ArgumentParser`` with ``run``, ``children`` and
        ``await`` subcommands.
    """
    parser = argparse.ArgumentParser(
        prog="preload-harness",
        description="Run commands against a preloading server and watch its workers.",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to an optional HarnessConfig YAML file.",
    )
    subparsers = parser.add_subparsers(dest="subcommand", required=True)

    run = subparsers.add_parser("run", help="Run a command and print its captured streams.")
    run.add_argument("--root", required=True, help="Target root directory.")
    timeout_group = run.add_mutually_exclusive_group()
    timeout_group.add_argument("--timeout", type=float, default=None, help="Seconds to wait.")
    timeout_group.add_argument(
        "--no-timeout", action="store_true", help="Wait for the command indefinitely."
    )
    run.add_argument("--strict", action="store_true", help="Fail on a non-zero exit status.")
    run.add_argument("command", nargs=argparse.REMAINDER, help="Command to run.")

    children = subparsers.add_parser("children", help="Print the child pids of a process.")
    children.add_argument("pid", type=int)

    wait = subparsers.add_parser("await", help="Wait until processes have exited.")
    wait.add_argument("pids", type=int, nargs="+")
    wait.add_argument("--timeout", type=float, default=None, help="Seconds to wait.")

    return parser


def _run(args: argparse.Namespace) -> int:
    config = load_config(args.config)
    configure_logging(config)

    words = args.command[1:] if args.command[:1] == ["--"] else args.command
    if not words:
        print("Error: no command given", file=sys.stderr)
        return 1
    # A single word is taken verbatim so shell syntax survives
    command = words[0] if len(words) == 1 else shlex.join(words)

    timeout = None if args.no_timeout else (args.timeout if args.timeout is not None else DEFAULT)

    with CommandRunner(args.root, config) as runner:
        if args.strict:
            try:
                artifacts = runner.run_strict(command, timeout=timeout)
            except CommandFailedError as exc:
                print(exc.output, end="", file=sys.stderr)
                return 1
        else:
            artifacts = runner.run(command, timeout=timeout)
        print(runner.debug(artifacts), end="")
    return artifacts.status if artifacts.status >= 0 else 128 - artifacts.status


def main(argv: list[str] | None = None) -> int:
    """Entry point for the preload-harness CLI application.

    Args:
        argv: Argument list; defaults to ``sys.argv[1:]``.

    Returns:
        Exit code: the command's status for ``run``, otherwise 0 on
        success and 1 on error.
    """
    parser = _build_parser()
    args = parser.parse_args(argv)

    try:
        if args.subcommand == "run":
            return _run(args)

        config = load_config(args.config)
        configure_logging(config)

        if args.subcommand == "children":
            for pid in children_of(args.pid):
                print(pid)
        else:
            timeout = args.timeout if args.timeout is not None else config.default_timeout
            await_pids(args.pids, timeout, interval=config.reload_poll_interval)
    except Exception as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
