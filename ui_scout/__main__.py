import argparse
import asyncio
import dataclasses
import logging
import os

from .browser import PlaywrightScreen, open_page
from .config import ExplorationConfig
from .errors import ScoutError
from .exploration_path import ExplorationPath
from .exploration_policy import ExplorationAgent
from .oracle import OpenAIOracle
from .results import ExplorationResult

_CI_FIELDS = ("temperature", "seed", "top_p")


async def _run(url: str, headless: bool, model: str | None, config: ExplorationConfig) -> ExplorationResult:
    oracle = OpenAIOracle(model=model, temperature=config.temperature, top_p=config.top_p, seed=config.seed)
    async with open_page(url, headless=headless, settle=config.settle_delay) as page:
        screen = PlaywrightScreen(page)
        agent = ExplorationAgent(screen, screen, oracle=oracle, config=config)
        return await agent.explore()


def main() -> None:
    parser = argparse.ArgumentParser(description="Run UI Scout against a target web app")
    parser.add_argument("--url", help="Target web app URL to explore")
    parser.add_argument("--goal", help="Exploration goal handed to the oracle")
    parser.add_argument("--max-steps", type=int, help="Maximum number of steps to execute")
    parser.add_argument("--out", default="run_artifacts", help="Directory to save run artefacts")
    parser.add_argument("--headless", action="store_true", help="Run browser in headless mode")
    parser.add_argument("--model", help="Oracle model name (default: $SCOUT_MODEL or gpt-4o-mini)")
    parser.add_argument("--no-verify", action="store_true", help="Skip outcome verification and retries")
    parser.add_argument("--max-retries", type=int, help="Alternative actions to try after a failed verification")
    parser.add_argument("--sleep", type=float, help="Seconds to let the UI settle after each action")
    parser.add_argument("--ci", action="store_true", help="Use the low-temperature, seeded CI preset")
    parser.add_argument("--resume", metavar="SESSION_JSON", help="Continue a previously persisted session")
    parser.add_argument("--summary", metavar="SESSION_JSON", help="Print the summary of a saved session and exit")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO)

    if args.summary:
        try:
            path = ExplorationPath.load(args.summary)
        except ScoutError as exc:
            parser.exit(1, f"error: {exc}\n")
        print(path.summary())
        print()
        print(path.navigation_map())
        return

    if not args.url:
        parser.error("--url is required unless --summary is given")

    os.makedirs(args.out, exist_ok=True)
    if args.resume:
        if not os.path.exists(args.resume):
            parser.error(f"--resume: no session file at {args.resume}")
        persist_path = args.resume
        graph_path = os.path.join(os.path.dirname(os.path.abspath(args.resume)), "navigation_graph.json")
    else:
        persist_path = os.path.join(args.out, "session.json")
        graph_path = None

    config = ExplorationConfig.from_env(
        steps=args.max_steps,
        goal=args.goal,
        output_dir=args.out,
        enable_verification=False if args.no_verify else None,
        max_retries=args.max_retries,
        settle_delay=args.sleep,
        persist_path=persist_path,
        graph_path=graph_path,
    )
    if args.ci:
        kept = {k: v for k, v in dataclasses.asdict(config).items() if k not in _CI_FIELDS}
        config = ExplorationConfig.ci_preset(**kept)

    print(f"Starting exploration of {args.url}")
    print(f"Goal: {config.goal}")
    try:
        result = asyncio.run(_run(args.url, args.headless, args.model, config))
    except ScoutError as exc:
        parser.exit(1, f"error: {exc}\n")
    print(result.summary)


if __name__ == "__main__":
    main()
