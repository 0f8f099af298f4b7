"""Command line entry point: probe providers, list models, send a chat or generate request."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import TYPE_CHECKING, Sequence

from llmaxx.config import get_config
from llmaxx.core.errors import LlmaxxError
from llmaxx.core.logging_config import setup_logging

if TYPE_CHECKING:
    from llmaxx.core.client import AIClient

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="llmaxx", description="Talk to local and cloud model providers.")
    parser.add_argument("--config", help="Path to a YAML config file.")
    parser.add_argument("--provider", help="Provider to use instead of the configured one.")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("status", help="Check whether the provider is reachable.")
    sub.add_parser("models", help="List models offered by the provider.")

    chat = sub.add_parser("chat", help="Send one user message.")
    chat.add_argument("text")
    chat.add_argument("--stream", action="store_true", help="Print tokens as they arrive.")
    chat.add_argument("--model")
    chat.add_argument("--temperature", type=float)

    gen = sub.add_parser("generate", help="Single-prompt completion.")
    gen.add_argument("text")
    gen.add_argument("--model")
    gen.add_argument("--temperature", type=float)

    pull = sub.add_parser("pull", help="Download a model (Ollama).")
    pull.add_argument("model")
    delete = sub.add_parser("delete", help="Remove a model (Ollama).")
    delete.add_argument("model")
    return parser


def _options(args: argparse.Namespace) -> dict:
    return {
        k: v
        for k, v in (("model", getattr(args, "model", None)), ("temperature", getattr(args, "temperature", None)))
        if v is not None
    }


async def run_command(client: AIClient, args: argparse.Namespace) -> int:
    if args.command == "status":
        status = await client.check_status()
        print(status.model_dump_json(indent=2))
        return 0 if status.online else 1
    if args.command == "models":
        for model in await client.get_models():
            print(model.name)
        return 0
    try:
        if args.command == "pull":
            return 0 if await client.pull_model(args.model) else 1
        if args.command == "delete":
            return 0 if await client.delete_model(args.model) else 1
        if args.command == "chat" and args.stream:
            async for chunk in client.stream_message(args.text, _options(args)):
                sys.stdout.write(chunk.content)
                sys.stdout.flush()
            sys.stdout.write("\n")
            return 0
        if args.command == "chat":
            result = await client.send_message(args.text, _options(args))
        else:
            result = await client.generate_text(args.text, _options(args))
    except LlmaxxError as e:
        print(f"error: {e}", file=sys.stderr)
        return 2
    print(result.content)
    return 0


async def run_cli(args: argparse.Namespace) -> int:
    from llmaxx.core.client import AIClient

    config = get_config(args.config)
    setup_logging(config.logging.level, use_json=config.logging.use_json)
    client = AIClient.from_config(config)
    if args.provider and not client.set_active_provider(args.provider):
        print(f"unknown provider: {args.provider}", file=sys.stderr)
        return 2
    try:
        return await run_command(client, args)
    finally:
        await client.aclose()


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    return asyncio.run(run_cli(args))


if __name__ == "__main__":
    sys.exit(main())
