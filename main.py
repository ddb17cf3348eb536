"""
Console Test Harness for ConversationEngine

Interactive loop for walking through a blueprint session, plus a replay
mode that runs the built-in scenarios and prints their reports.

Usage:
    python main.py                     # interactive session
    python main.py --subject Science   # seed the session
    python main.py --replay            # run DEFAULT_SCENARIOS

Interactive input:
    plain text      -> 'text' action
    /start /continue /refine /ideas /whatif /help /proceed
    /select <n>     -> 'card_select' with the n-th offered card
    /state          -> print the current state
    /quit           -> end the session
"""

import argparse
import asyncio
import json
import logging
import sys

from coach.config import EngineConfig
from coach.contracts import SeedData
from coach.core.blueprint_formatter import BlueprintFormatter
from coach.core.conversation_engine import ConversationEngine
from coach.core.scenario_runner import DEFAULT_SCENARIOS, ScenarioRunner, format_reports
from coach.core.suggestion_provider import build_suggestion_provider
from coach.persistence import SessionPersistence
from coach.utils.helpers import generate_session_filename, generate_session_id

logger = logging.getLogger(__name__)

EXIT_COMMANDS = {"/quit", "/exit", "/stop"}


def print_separator(char="=", length=60):
    """Print a separator line"""
    print(char * length)


def print_result(result):
    """Print system output, cards and the legal actions"""
    prefix = "System" if result.accepted else f"Rejected [{result.error}]"
    print(f"\n{prefix}: {result.system_output}\n")

    for number, card in enumerate(result.cards, 1):
        print(f"  [{number}] {card.title}")
        if card.description:
            print(f"      {card.description}")
    if result.cards:
        print()

    state = result.state
    replies = ", ".join(action.value for action in result.quick_replies) or "(none)"
    print(f"[{state.stage.value} step {state.step_index} | {state.phase.value}] actions: {replies}")


def parse_input(line, offered_cards):
    """
    Map a console line to (action, payload).

    Returns:
        tuple: (action, payload), or (None, None) for an unusable /select
    """
    if not line.startswith("/"):
        return "text", line

    command, _, argument = line[1:].partition(" ")
    command = command.lower()

    if command == "select":
        try:
            index = int(argument.strip()) - 1
        except ValueError:
            return "card_select", argument.strip()
        if 0 <= index < len(offered_cards):
            return "card_select", offered_cards[index]
        return None, None

    return command, None


def load_model(config):
    """Load the HuggingFace client when a model is configured"""
    if not config.model_name:
        return None

    from coach.utils.hf_client import HuggingFaceClient

    print("\nLoading model (this may take 30 seconds)...")
    hf_client = HuggingFaceClient(
        model_name=config.model_name,
        load_in_4bit=config.load_in_4bit,
        device=config.device
    )
    logger.info(f"Model ready: {hf_client.get_model_info()}")
    return hf_client


def run_replay(config):
    """Run the built-in scenarios and print the report"""
    def engine_factory(seed):
        return ConversationEngine(seed=seed, config=config)

    runner = ScenarioRunner(engine_factory)
    reports = asyncio.run(runner.run_all())
    print(format_reports(reports))

    trace_file = generate_session_filename(prefix="scenario_reports")
    with open(trace_file, 'w') as f:
        json.dump([report.to_json() for report in reports], f, indent=2, ensure_ascii=False)
    print(f"Detailed reports saved to {trace_file}")

    return 0 if all(report.status == "PASSED" for report in reports) else 1


def run_interactive(config, seed):
    print_separator()
    print("CURRICULUM COACH - CONSOLE TEST")
    print_separator()

    try:
        hf_client = load_model(config)
        session_id = generate_session_id()
        engine = ConversationEngine(
            seed=seed,
            suggestion_provider=build_suggestion_provider(
                seed, hf_client, temperature=config.suggestion_temperature
            ),
            persistence=SessionPersistence(session_id, config.persistence_dir),
            config=config,
            session_id=session_id
        )
    except Exception as e:
        print(f"\nFailed to initialize: {e}")
        logger.exception("Initialization failed")
        return 1

    print(f"\nSession {engine.session_id}. Type /quit to end early.\n")
    print(f"System: {engine.current_message()}\n")

    while not engine.get_state().is_complete:
        try:
            line = input("> ").strip()
        except (KeyboardInterrupt, EOFError):
            print("\n\nSession interrupted by user")
            break

        if not line:
            continue
        if line.lower() in EXIT_COMMANDS:
            break
        if line.lower() == "/state":
            print(json.dumps(engine.get_state().to_json(), indent=2, ensure_ascii=False))
            continue

        action, payload = parse_input(line, engine.get_state().offered_cards)
        if action is None:
            print("No card with that number. Try /ideas or /whatif first.\n")
            continue

        print_result(asyncio.run(engine.process(action, payload)))

    if engine.get_state().is_complete:
        print_separator()
        print("BLUEPRINT COMPLETE")
        print_separator()

        formatter = BlueprintFormatter(catalog=engine.catalog)
        blueprint = formatter.format(engine.get_state(), engine.session_id, seed)
        path = formatter.save_to_file(blueprint, f"outputs/{generate_session_filename()}")
        print(f"\nBlueprint saved to {path}")

    print_separator()
    print("Console test complete")
    print_separator()
    return 0


def main(argv=None):
    parser = argparse.ArgumentParser(description="Curriculum coach console harness")
    parser.add_argument("--replay", action="store_true", help="run the built-in scenarios")
    parser.add_argument("--subject", default="Science")
    parser.add_argument("--age-group", default="Middle School (6-8)")
    parser.add_argument("--location", default="your community")
    args = parser.parse_args(argv)

    config = EngineConfig.from_env()
    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    if args.replay:
        return run_replay(config)

    seed = SeedData(subject=args.subject, age_group=args.age_group, location=args.location)
    return run_interactive(config, seed)


if __name__ == '__main__':
    sys.exit(main())
