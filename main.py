"""Pet evolution — command-line launcher. Runs one reaction for one pet."""

import argparse
import asyncio
import json
import logging
import os
import sys
from pathlib import Path

from dotenv import load_dotenv

from pet_evolution.config import load_settings
from pet_evolution.gateway import GeneratorGateway
from pet_evolution.llm import EchoLLM, llm_from_settings
from pet_evolution.pipeline import ReactionPipeline
from pet_evolution.storage import InMemoryRepository, JsonRepository

ROOT = Path(__file__).parent
load_dotenv(ROOT / ".env")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()


def _parse_env(pairs: list[str]) -> dict[str, str]:
    env: dict[str, str] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise argparse.ArgumentTypeError(f"--env expects key=value, got {pair!r}")
        env[key] = value
    return env


def main():
    parser = argparse.ArgumentParser(description="Run one pet reaction")
    parser.add_argument("--pet", required=True, help="Pet id")
    parser.add_argument("--situation", required=True, help="What is happening")
    parser.add_argument("--choice", required=True, help="What the player chose")
    parser.add_argument("--env", action="append", default=[], metavar="KEY=VALUE",
                        help="Environment detail (repeatable)")
    parser.add_argument("--data-dir", type=Path, default=None,
                        help="Pet storage directory (default: in-memory)")
    parser.add_argument("--config", type=Path, default=None,
                        help="Settings JSON file")
    parser.add_argument("--echo", action="store_true",
                        help="Use EchoLLM instead of the configured provider")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        environment = _parse_env(args.env)
    except argparse.ArgumentTypeError as e:
        parser.error(str(e))

    settings = load_settings(args.config)
    llm = EchoLLM() if args.echo else llm_from_settings(settings.connection)
    gateway = GeneratorGateway(llm, settings.generator)
    repository = JsonRepository(args.data_dir) if args.data_dir else InMemoryRepository()
    pipeline = ReactionPipeline(repository, gateway, settings)

    outcome = asyncio.run(
        pipeline.process_reaction(args.pet, args.situation, args.choice, environment)
    )
    print(outcome.model_dump_json(by_alias=True, indent=2))
    print(json.dumps(gateway.status()), file=sys.stderr)
    sys.exit(0 if outcome.success else 1)


if __name__ == "__main__":
    main()
