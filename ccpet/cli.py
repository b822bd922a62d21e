"""CLI entry point for ccpet."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

from ccpet.config import default_root, load_config
from ccpet.console import print_error, print_muted, print_pet, print_success, print_warning
from ccpet.status import FALLBACK_DISPLAY, StatusLine

log = logging.getLogger(__name__)


def _read_hook_input() -> dict | None:
    """Parse the status hook JSON from stdin; None if absent or invalid."""
    if sys.stdin is None or sys.stdin.isatty():
        return None
    text = sys.stdin.read().strip()
    if not text:
        return None
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        log.debug("Ignoring non-JSON hook input")
        return None
    return data if isinstance(data, dict) else None


def cmd_adopt(status_line: StatusLine) -> int:
    status_line.pet.apply_time_decay()
    if not status_line.pet.is_dead():
        print_warning("Your pet is still alive. Keep it fed!")
        return 1

    old_name = status_line.pet.get_state().pet_name
    grave = status_line.adopt_new_pet()
    if grave is None:
        print_error(f"Could not archive {old_name}; a backup was kept in {status_line.root}")
    else:
        print_muted(f"{old_name} rests in {grave}")

    state = status_line.pet.get_state()
    print_success("Adopted a new pet!")
    print_pet(state.pet_name, state.animal_type.value)
    return 0


def cmd_status(status_line: StatusLine, hook_input: dict | None) -> int:
    if hook_input is None:
        display = status_line.status()
    else:
        display = status_line.process(hook_input)
    status_line.save()
    sys.stdout.write(display)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ccpet",
        description="A token-fed virtual pet for your coding assistant's status line",
    )
    parser.add_argument(
        "--root",
        default=None,
        help="Directory for pet state (default: ~/.claude-pet)",
    )
    parser.add_argument(
        "--config", "-c",
        default=None,
        help="Path to config.yaml (default: <root>/config.yaml)",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable debug logging",
    )
    parser.add_argument(
        "--adopt",
        action="store_true",
        help="Archive a dead pet to the graveyard and adopt a new one",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    level = logging.DEBUG if args.verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
    )

    root = Path(args.root).expanduser() if args.root else default_root()
    try:
        config = load_config(args.config, root=root)
        status_line = StatusLine(root, config)
        if args.adopt:
            return cmd_adopt(status_line)
        return cmd_status(status_line, _read_hook_input())
    except Exception:
        log.exception("ccpet failed")
        if args.adopt:
            print_error("Adoption failed; see the log for details")
            return 1
        sys.stdout.write(FALLBACK_DISPLAY)
        return 0


if __name__ == "__main__":
    sys.exit(main())
