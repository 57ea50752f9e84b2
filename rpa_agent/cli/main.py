"""`rpa-agent` command-line entry point.

Examples:
    # Serve the 18 browser tools to an MCP client over stdio
    $ rpa-agent mcp

    # Serve the command protocol on ws://127.0.0.1:17333/ws
    $ rpa-agent serve-ws --port 17333

    # Run a line script (or JSON step array) and print the results
    $ rpa-agent run-script flow.txt

    # Show the effective configuration
    $ rpa-agent --config .rpa/runner_config.yaml config
"""
import argparse
import asyncio
import json
from pathlib import Path
from typing import Any, Awaitable, Dict, List, Optional

from rich.console import Console

from rpa_agent import __version__
from rpa_agent.config import RunnerConfig, load_config, set_config
from rpa_agent.graceful_shutdown import register_shutdown_handler, run_shutdown_handlers, setup_signal_handlers
from rpa_agent.utils.logging import get_logger, set_level

logger = get_logger("rpa_agent.cli")

# Results go to stdout; logs stay on stderr.
stdout_console = Console()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="rpa-agent",
        description="Browser automation agent with MCP, WebSocket and script front ends",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--config", default=None, help="Path to a JSON or YAML runner config")
    parser.add_argument("--log-level", default=None, help="Log level (overrides config)")
    parser.add_argument(
        "--headed",
        action="store_true",
        help="Show the browser window (overrides browser.headless)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("mcp", help="Serve browser tools over MCP stdio")

    ws_parser = subparsers.add_parser("serve-ws", help="Serve the command protocol over WebSocket")
    ws_parser.add_argument("--host", default=None, help="Host to bind to (overrides config)")
    ws_parser.add_argument("--port", type=int, default=None, help="Port to bind to (overrides config)")

    script_parser = subparsers.add_parser("run-script", help="Run a script file and print the results")
    script_parser.add_argument("file", help="Line script or JSON step array")
    script_parser.add_argument("--workspace", default=None, help="Workspace id (created when missing)")
    script_parser.add_argument(
        "--continue-on-error",
        action="store_true",
        help="Keep running after a failed step",
    )

    subparsers.add_parser("config", help="Print the effective configuration as JSON")
    return parser


def _cli_overrides(args: argparse.Namespace) -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    if args.headed:
        overrides["browser"] = {"headless": False}
    if args.log_level:
        overrides["logging"] = {"level": args.log_level.upper()}
    if getattr(args, "host", None) or getattr(args, "port", None):
        server: Dict[str, Any] = {}
        if args.host:
            server["ws_host"] = args.host
        if args.port:
            server["ws_port"] = args.port
        overrides["server"] = server
    return overrides


async def _until_stopped(main: Awaitable[Any], stop_event: asyncio.Event) -> Any:
    """Run `main` until it finishes or a shutdown signal sets `stop_event`."""
    main_task = asyncio.ensure_future(main)
    stop_task = asyncio.ensure_future(stop_event.wait())
    done, pending = await asyncio.wait({main_task, stop_task}, return_when=asyncio.FIRST_COMPLETED)
    for task in pending:
        task.cancel()
    await asyncio.gather(*pending, return_exceptions=True)
    if main_task in done:
        return main_task.result()
    return None


async def _run(args: argparse.Namespace, config: RunnerConfig) -> int:
    # Imported here so `rpa-agent config` works without starting Playwright.
    from rpa_agent.runtime.deps import AgentDeps

    deps = AgentDeps.create(config)
    register_shutdown_handler(deps.aclose)
    stop_event = asyncio.Event()
    setup_signal_handlers(stop_event)

    try:
        if args.command == "mcp":
            from rpa_agent.adapters.mcp_server import serve_stdio

            await _until_stopped(serve_stdio(deps), stop_event)
            return 0

        if args.command == "serve-ws":
            from rpa_agent.adapters.ws_server import serve_ws

            await serve_ws(deps, stop_event=stop_event)
            return 0

        if args.command == "run-script":
            from rpa_agent.adapters.script import run_script

            text = Path(args.file).read_text(encoding="utf-8")
            workspace_id = args.workspace
            if not workspace_id:
                workspace_id, _ = await deps.page_registry.create_workspace()
            result = await _until_stopped(
                run_script(workspace_id, text, deps, stop_on_error=not args.continue_on_error),
                stop_event,
            )
            if result is None:
                logger.warning("Script interrupted", emoji_key="script")
                return 130
            stdout_console.print_json(json.dumps(result.to_dict(), ensure_ascii=False, default=str))
            return 0 if result.ok else 1
    finally:
        await run_shutdown_handlers()
    return 2


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    config = load_config(args.config, overrides=_cli_overrides(args))
    set_config(config)
    set_level(config.logging.level)

    if args.command == "config":
        stdout_console.print_json(json.dumps(config.model_dump(mode="json")))
        return 0

    logger.info(f"Starting rpa-agent v{__version__} ({args.command})", emoji_key="start")
    try:
        return asyncio.run(_run(args, config))
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    raise SystemExit(main())
