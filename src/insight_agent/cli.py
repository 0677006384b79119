"""
Command-line interface for insight-agent.
"""

import argparse
import logging
import sys

import structlog
import uvicorn

from .config import get_settings, load_object


def configure_logging(log_level: str = "INFO") -> None:
    """Configure structlog for console output."""
    logging.basicConfig(format="%(message)s", stream=sys.stderr, level=log_level.upper())
    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(colors=True),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


logger = structlog.get_logger()


def main(argv: list[str] | None = None) -> None:
    """Main entry point for the CLI."""
    settings = get_settings()

    parser = argparse.ArgumentParser(
        prog="insight-agent",
        description="insight-agent - real-time WebSocket sessions for an AI agent",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    serve_parser = subparsers.add_parser("serve", help="Start the session server")
    serve_parser.add_argument("--host", default=settings.host, help="Host to bind to")
    serve_parser.add_argument("--port", type=int, default=settings.port, help="Port to bind to")
    serve_parser.add_argument("--reload", action="store_true", help="Enable auto-reload")

    config_parser = subparsers.add_parser("config", help="Show configuration")
    config_parser.add_argument("--check", action="store_true", help="Check configuration validity")

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    configure_logging(settings.log_level)

    if args.command == "serve":
        run_server(args.host, args.port, args.reload)
    elif args.command == "config":
        ok = show_config(args.check)
        if not ok:
            sys.exit(1)


def run_server(host: str, port: int, reload: bool) -> None:
    """Run the FastAPI server."""
    settings = get_settings()
    logger.info("Starting insight-agent server", host=host, port=port, ws_path=settings.ws_path)

    uvicorn.run(
        "insight_agent.server.app:create_app",
        host=host,
        port=port,
        reload=reload,
        factory=True,
        log_level=settings.log_level.lower(),
    )


def show_config(check: bool) -> bool:
    """Show current configuration. Returns False if --check finds a problem."""
    settings = get_settings()

    print("\n=== insight-agent Configuration ===\n")

    print("Server:")
    print(f"  Host: {settings.host}")
    print(f"  Port: {settings.port}")
    print(f"  WebSocket Path: {settings.ws_path}")
    print(f"  Debug: {settings.debug}")
    print(f"  Log Level: {settings.log_level}")

    print("\nAgent:")
    print(f"  Factory: {settings.agent_factory or '(not set)'}")
    print(f"  Execution Mode: {settings.execution_mode or '(none)'}")
    print(f"  Max Steps: {settings.max_steps}")

    print("\nCompaction:")
    print(f"  Enabled: {settings.compaction_enabled}")
    print(f"  Keep First: {settings.compaction_keep_first}")
    print(f"  Keep Last: {settings.compaction_keep_last}")

    if not check:
        return True

    print("\n=== Configuration Check ===\n")
    issues = []

    if not settings.agent_factory:
        issues.append("AGENT_FACTORY is not set")
    else:
        try:
            factory = load_object(settings.agent_factory)
            if not callable(factory):
                issues.append(f"AGENT_FACTORY '{settings.agent_factory}' is not callable")
        except (ImportError, AttributeError, ValueError) as e:
            issues.append(f"AGENT_FACTORY could not be loaded: {e}")

    if settings.execution_mode:
        try:
            load_object(settings.execution_mode)
        except (ImportError, AttributeError, ValueError) as e:
            issues.append(f"EXECUTION_MODE could not be loaded: {e}")

    if settings.compaction_keep_first < 0 or settings.compaction_keep_last < 0:
        issues.append("Compaction keep counts must not be negative")

    if issues:
        for issue in issues:
            print(f"  ❌ {issue}")
        return False

    print("  ✅ Configuration looks good")
    return True


if __name__ == "__main__":
    main()
