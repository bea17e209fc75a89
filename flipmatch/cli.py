"""
Flipmatch CLI - Command-line interface for the engine.

Usage:
    flipmatch serve [--host H] [--port P] [--simulate]   Run the API server
    flipmatch simulate [--mode color|object] [--seed N]  Play one game in memory
"""

import argparse
import asyncio
import json
import logging
import sys


def main():
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Flipmatch - Robot memory-matching game engine",
        prog="flipmatch",
    )
    parser.add_argument("--log-level", default="INFO", help="Logging level")
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # Serve command
    serve_parser = subparsers.add_parser("serve", help="Run the API server")
    serve_parser.add_argument("--host", default="0.0.0.0", help="Bind address")
    serve_parser.add_argument("--port", type=int, default=8000, help="Bind port")
    serve_parser.add_argument("--simulate", action="store_true", help="Use the in-memory table")

    # Simulate command
    simulate_parser = subparsers.add_parser("simulate", help="Play one game against the in-memory table")
    simulate_parser.add_argument("--mode", default="color", help="color or object")
    simulate_parser.add_argument("--seed", type=int, default=None, help="Shuffle seed")
    simulate_parser.add_argument("--frames", action="store_true", help="Also print frame_update messages")

    args = parser.parse_args()

    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command == "serve":
        cmd_serve(args)
    elif args.command == "simulate":
        cmd_simulate(args)
    else:
        parser.print_help()
        sys.exit(1)


def cmd_serve(args):
    """Run the HTTP and WebSocket server."""
    import uvicorn

    from .api import GameService, create_app
    from .config import EngineConfig

    config = EngineConfig.from_env()
    if args.simulate:
        config.simulate = True

    app = create_app(GameService(config))
    uvicorn.run(app, host=args.host, port=args.port)


def cmd_simulate(args):
    """Play a full game with simulated hardware and print every message."""
    from .api.schemas import serialize_message
    from .config import EngineConfig
    from .engine_core.events import MessageType, ModeSelected
    from .engine_core.state import GameMode, GameState
    from .session.game_loop import GameLoop, GameComponents
    from .simulation import (
        SimulatedTable, SimulatedCamera, SimulatedBoardLocator,
        SimulatedClassifier, SimulatedArm,
    )

    try:
        mode = GameMode.parse(args.mode)
    except ValueError as e:
        print(f"Error: {e}")
        sys.exit(1)

    config = EngineConfig(tick_interval=0.0, settle_delay=0.0, jpeg_quality=50)
    table = SimulatedTable.shuffled(mode, seed=args.seed)
    components = GameComponents(
        frame_source=SimulatedCamera(table),
        locator=SimulatedBoardLocator(table),
        classifier=SimulatedClassifier(table, mode),
        arm=SimulatedArm(table),
    )
    print(f"Layout: {', '.join(table.layout)}")

    def publish(message):
        if message.type == MessageType.FRAME_UPDATE and not args.frames:
            return
        print(json.dumps(serialize_message(message)))

    loop = GameLoop(GameState(), components, config, publish)
    loop.dispatch(ModeSelected(mode))
    final = asyncio.run(loop.run())

    flips = sum(1 for action, _ in components.arm.commands if action == "flip")
    print(f"\nFinished: {final.status.value}, {final.pairs_found} pairs in {flips} flips")
    if not final.is_complete:
        sys.exit(1)


if __name__ == "__main__":
    main()
