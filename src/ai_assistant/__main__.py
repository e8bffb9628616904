"""CLI entry point for ai-assistant."""

from __future__ import annotations

import argparse
import asyncio
import signal
import sys

from ai_assistant.app import TEXT_REQUEST_ID, TEXT_RESPONSE_ID, AssistantApp
from ai_assistant.config import AppConfig, load_config
from ai_assistant.errors import ValidationError
from ai_assistant.log import setup_logging
from ai_assistant.storage.models import StateValue

EXIT_COMMANDS = {"exit", "quit", "/exit", "/quit"}


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="ai-assistant",
        description="Conversational automation assistant with timers and value triggers",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    for name, help_text in (
        ("start", "Start the assistant"),
        ("chat", "Start the assistant with a console chat"),
        ("config-check", "Validate configuration"),
        ("model-info", "Show the configured models"),
    ):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument("-c", "--config", default="config.yaml", help="Path to config file")
        sub.add_argument("-e", "--env", default=".env", help="Path to .env file")

    args = parser.parse_args()

    if args.command is None:
        # Default to start
        args.command = "start"
        args.config = "config.yaml"
        args.env = ".env"

    if args.command == "config-check":
        _check_config(args.config, args.env)
    elif args.command == "model-info":
        _model_info(args.config, args.env)
    elif args.command == "chat":
        _chat(args.config, args.env)
    elif args.command == "start":
        _run(args.config, args.env)


def _load(config_path: str, env_path: str) -> AppConfig:
    try:
        return load_config(config_path, env_path)
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        print("Copy config.example.yaml to config.yaml first")
        sys.exit(1)
    except Exception as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)


def _check_config(config_path: str, env_path: str) -> None:
    """Validate configuration and print summary."""
    config = _load(config_path, env_path)
    assistant = config.assistant
    print(f"Configuration valid: {config_path}")
    print(f"  Data directory: {config.data_dir}")
    print(f"  Assistant: {assistant.name} [{assistant.model or '(no model)'}]")
    if assistant.model and config.find_model(assistant.model) is None:
        print(f"  Warning: model {assistant.model!r} is not listed as active under 'models'")
    print(f"  History: {assistant.chat_history} turns")
    print(f"  Retries: {assistant.max_retries} every {assistant.retry_delay}s")
    print(f"  Endpoints: {len([e for e in config.available_endpoints if e.active])}")
    print(f"  External functions: {', '.join(f.name for f in config.available_functions) or '(none)'}")
    print(f"  Storage: {config.storage.db_path}")
    print(f"  Scheduler timezone: {config.scheduler.timezone}")


def _model_info(config_path: str, env_path: str) -> None:
    """Show the configured models and which one the assistant uses."""
    config = _load(config_path, env_path)
    assistant = config.assistant

    print("AI Model Configuration")
    print("=" * 50)
    for model in config.models:
        marker = " (assistant)" if model.name == assistant.model else ""
        print(f"\n  Model: {model.name}{marker}")
        print(f"    Provider: {model.provider}")
        print(f"    Active  : {model.active}")
    print(f"\n  Tokens  : {assistant.max_tokens}")
    print(f"  Temp    : {assistant.temperature}")
    print(f"  Language: {assistant.language}")
    print()


def _run(config_path: str, env_path: str) -> None:
    """Load config and run until SIGINT/SIGTERM."""
    config = _load(config_path, env_path)
    setup_logging(config.log_level, config.log_format)

    async def _async_main() -> None:
        loop = asyncio.get_running_loop()
        stop_event = asyncio.Event()

        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, stop_event.set)
            except NotImplementedError:
                # Windows doesn't support add_signal_handler
                signal.signal(sig, lambda s, f: loop.call_soon_threadsafe(stop_event.set))

        app = AssistantApp(config)
        try:
            await app.start()
        except ValidationError as e:
            print(f"Startup error: {e}", file=sys.stderr)
            await app.stop()
            sys.exit(1)
        await stop_event.wait()
        await app.stop()

    asyncio.run(_async_main())


def _chat(config_path: str, env_path: str) -> None:
    """Console front-end: lines go to the text request, responses are printed."""
    config = _load(config_path, env_path)
    setup_logging(config.log_level, config.log_format)

    async def _print_response(state: StateValue) -> None:
        if state.value:
            print(f"\n{config.assistant.name}: {state.value}\n> ", end="", flush=True)

    async def _async_main() -> None:
        app = AssistantApp(config)
        try:
            await app.start()
        except ValidationError as e:
            print(f"Startup error: {e}", file=sys.stderr)
            await app.stop()
            sys.exit(1)
        token = app.store.subscribe(TEXT_RESPONSE_ID, _print_response)
        print(f"Chatting with {config.assistant.name}. Type 'exit' to quit.")
        try:
            while True:
                try:
                    line = await asyncio.to_thread(input, "> ")
                except EOFError:
                    break
                line = line.strip()
                if line.lower() in EXIT_COMMANDS:
                    break
                if line:
                    await app.store.set(TEXT_REQUEST_ID, line, ack=False)
        finally:
            app.store.unsubscribe(token)
            await app.stop()

    try:
        asyncio.run(_async_main())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
