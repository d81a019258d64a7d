#!/usr/bin/env python3
"""
Gemma Bridge - Main Entry Point

Starts a gemma session, sends prompts to it and prints the responses.
"""

import argparse
import asyncio
import dataclasses
import logging
import sys
from pathlib import Path
from typing import List, Optional

from gemma_bridge.core.session import Session
from gemma_bridge.utils.config import Config
from gemma_bridge.utils.error_handler import GemmaBridgeError, SessionClosedError
from gemma_bridge.utils.logging_setup import setup_logging


def load_config(config_path: Optional[str] = None) -> Config:
    """Load configuration from file, or from the environment if no file is given"""
    if config_path is None:
        return Config.from_env()

    config_file = Path(config_path)
    if not config_file.exists():
        print(f"❌ Configuration file not found: {config_path}", file=sys.stderr)
        sys.exit(1)

    try:
        return Config.load_from_file(config_file)
    except (OSError, ValueError, KeyError) as e:
        print(f"❌ Failed to load configuration: {e}", file=sys.stderr)
        sys.exit(1)


def apply_overrides(config: Config, args: argparse.Namespace) -> Config:
    """Apply command-line overrides on top of the loaded configuration"""
    session_overrides = {
        key: value for key, value in {
            'directory': args.directory,
            'model': args.model,
            'compressed_weights': args.weights,
            'tokenizer': args.tokenizer,
        }.items() if value is not None
    }
    if session_overrides:
        config.session = dataclasses.replace(config.session, **session_overrides)

    if args.timeout is not None:
        config.exchange.response_timeout = args.timeout
    if args.log_level is not None:
        config.logging.level = args.log_level
    return config


def startup_checks(config: Config) -> bool:
    """Perform startup checks"""
    try:
        config.validate()
    except ValueError as e:
        print(f"❌ {e}", file=sys.stderr)
        return False

    binary = Path(config.session.binary_path)
    if not binary.is_file():
        print(f"❌ Gemma binary not found: {binary}", file=sys.stderr)
        print("📖 Set GEMMA_DIR or pass --directory to point at your gemma build", file=sys.stderr)
        return False

    for label, path in (("weights", config.session.compressed_weights_path),
                        ("tokenizer", config.session.tokenizer_path)):
        if not Path(path).is_file():
            print(f"⚠️ {label} file not found: {path}", file=sys.stderr)

    return True


async def run_prompt(session: Session, prompt: str, stream: bool) -> None:
    """Send one prompt and write the response to stdout"""
    if stream:
        async with await session.send_request_stream(prompt) as response:
            async for chunk in response:
                sys.stdout.write(chunk)
                sys.stdout.flush()
    else:
        chunks = await session.send_request_await_response(prompt)
        sys.stdout.write(''.join(chunks))
    sys.stdout.write('\n')
    sys.stdout.flush()


async def read_prompt() -> Optional[str]:
    """Read one line from stdin without blocking the event loop; None at EOF"""
    loop = asyncio.get_running_loop()
    line = await loop.run_in_executor(None, sys.stdin.readline)
    return line or None


async def run(config: Config, prompts: List[str], stream: bool) -> int:
    """Run prompts through a gemma session; returns the exit status"""
    logger = logging.getLogger('gemma_bridge.main')

    try:
        async with Session(config) as session:
            print("✅ Gemma started!", file=sys.stderr)

            if prompts:
                for prompt in prompts:
                    await run_prompt(session, prompt, stream)
                return 0

            while True:
                if sys.stdin.isatty():
                    print("> ", end="", file=sys.stderr, flush=True)
                line = await read_prompt()
                if line is None:
                    return 0
                prompt = line.strip()
                if not prompt:
                    continue
                if prompt in ("exit", "quit"):
                    return 0
                await run_prompt(session, prompt, stream)

    except SessionClosedError as e:
        if e.partial_response:
            sys.stdout.write(''.join(e.partial_response) + '\n')
        logger.error(f"Gemma exited unexpectedly: {e}")
        print(f"❌ {e}", file=sys.stderr)
        return 1
    except GemmaBridgeError as e:
        logger.error(f"Session error: {e}")
        print(f"❌ {e}", file=sys.stderr)
        return 1


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Gemma Bridge - send prompts to an interactive gemma process"
    )
    parser.add_argument(
        "prompts", nargs="*",
        help="Prompts to send; reads prompts from stdin when omitted"
    )
    parser.add_argument(
        "--config", "-c",
        help="JSON configuration file (default: environment only)",
        default=None
    )
    parser.add_argument("--directory", "-d", help="Directory holding the gemma binary and model files")
    parser.add_argument("--model", "-m", help="Model identifier, e.g. 2b-it")
    parser.add_argument("--weights", "-w", help="Compressed weights file name")
    parser.add_argument("--tokenizer", "-t", help="Tokenizer file name")
    parser.add_argument(
        "--stream", "-s",
        action="store_true",
        help="Print response chunks as they arrive"
    )
    parser.add_argument("--timeout", type=float, help="Response timeout in seconds")
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Log level"
    )
    parser.add_argument(
        "--version", "-v",
        action="version",
        version="Gemma Bridge 1.0.0"
    )
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point"""
    args = parse_args(argv)

    config = apply_overrides(load_config(args.config), args)

    if not startup_checks(config):
        return 1

    setup_logging(
        level=config.logging.level,
        log_file=config.logging.file,
        max_bytes=config.logging.max_bytes,
        backup_count=config.logging.backup_count
    )

    try:
        return asyncio.run(run(config, args.prompts, args.stream))
    except KeyboardInterrupt:
        print("\n👋 Goodbye!", file=sys.stderr)
        return 130


if __name__ == "__main__":
    sys.exit(main())
