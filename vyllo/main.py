"""
Vyllo: sticker & apparel print studio in the terminal.

Usage:
  python -m vyllo.main --prompt "retro robot" --style kawaii
  python -m vyllo.main --prompt "neon koi" --kind print --style y2k --count 2
  python -m vyllo.main --prompt "my cat, astronaut" --reference cat.jpg
  python -m vyllo.main --list-history

After the first design opens, type feedback to edit it, or a command:
  /mockup <preset | description>   virtual try-on (presets: /presets)
  /photo <path>                    try the design on your own photo
  /design  /view mockup            switch what you are editing
  /save  /export  /history  /quit
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional

from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.prompt import Prompt
from rich.rule import Rule
from rich.table import Table

from .config import Settings, get_settings
from .conversation import ConversationController
from .errors import NoActiveDesignError, VylloError
from .history import HistoryStore, JsonlHistoryStore
from .mockup_compositor import CUSTOM_MODEL_DESCRIPTION, MOCKUP_PRESETS, get_preset
from .pipeline import build_controller
from .types import ConversationTurn, Design, DesignKind, ImagePart, StickerStyle, ViewMode
from .zip_exporter import create_session_zip, save_design

console = Console()

KIND_CHOICES = {"sticker": DesignKind.STICKER, "print": DesignKind.FASHION}


# ── CLI ───────────────────────────────────────────────────────────────────────

def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Vyllo: sticker & print designer")
    parser.add_argument("--prompt", default="", help="What to draw (asked interactively if omitted)")
    parser.add_argument("--style", default="kawaii", help="Style name, e.g. kawaii, pop_art, streetwear")
    parser.add_argument("--kind", choices=sorted(KIND_CHOICES), default="sticker")
    parser.add_argument("--count", type=int, default=1, help="Designs per batch (generated one by one)")
    parser.add_argument("--reference", default=None, help="Optional reference image path")
    parser.add_argument("--output", default=None, help="Output directory (default: outputs/<timestamp>)")
    parser.add_argument("--history", default=None, help="History log path (default: VYLLO_HISTORY_PATH)")
    parser.add_argument("--list-history", action="store_true", help="Print stored designs and exit")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return parser.parse_args(argv)


def setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False)],
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


# ── Output helpers ────────────────────────────────────────────────────────────

def show_history(history: HistoryStore) -> None:
    designs = history.load_all()
    if not designs:
        console.print("[dim]History is empty.[/dim]")
        return
    table = Table(title=f"History ({len(designs)})")
    table.add_column("ID", style="cyan")
    table.add_column("Kind")
    table.add_column("Style")
    table.add_column("Prompt", overflow="fold")
    table.add_column("Created", style="dim")
    for d in reversed(designs):
        created = datetime.fromtimestamp(d.created_at / 1000).strftime("%Y-%m-%d %H:%M")
        table.add_row(d.id[:8], d.kind.value, d.style.value, d.prompt, created)
    console.print(table)


def show_presets() -> None:
    table = Table(title="Mockup presets")
    table.add_column("ID", style="cyan")
    table.add_column("Label")
    table.add_column("Scene", overflow="fold")
    for p in MOCKUP_PRESETS:
        table.add_row(p.id, p.label, p.prompt)
    console.print(table)


def show_turn(turn: ConversationTurn, output_dir: Path) -> None:
    body = turn.text
    if turn.attachment is not None:
        path = save_design(turn.attachment, output_dir)
        body += f"\n\n[dim]→ {path}[/dim]"
    console.print(Panel(body, title="Vyllo", border_style="magenta"))


def _session_designs(controller: ConversationController) -> List[Design]:
    """Unique attachments of the transcript, in order."""
    seen: Dict[str, Design] = {}
    for turn in controller.transcript:
        if turn.attachment is not None:
            seen.setdefault(turn.attachment.id, turn.attachment)
    return list(seen.values())


# ── Chat loop ─────────────────────────────────────────────────────────────────

async def chat_loop(controller: ConversationController, output_dir: Path, history: HistoryStore) -> None:
    console.print(
        "  [dim]Describe a change, e.g. 'make it blue' or 'add sunglasses'.\n"
        "  Commands: /mockup <preset|description>  /photo <path>  /presets\n"
        "            /design  /view mockup  /save  /export  /history  /quit[/dim]\n"
    )

    while True:
        user_input = Prompt.ask("💬 Your feedback").strip()
        if not user_input:
            continue
        command, _, arg = user_input.partition(" ")
        command = command.lower()
        arg = arg.strip()
        before = len(controller.transcript)

        try:
            if command in ("/quit", "/exit", "q", "quit", "exit"):
                break

            elif command == "/presets":
                show_presets()
                continue

            elif command == "/history":
                show_history(history)
                continue

            elif command == "/mockup":
                if not arg:
                    show_presets()
                    continue
                preset = get_preset(arg)
                description = preset.prompt if preset else arg
                with console.status(f"Compositing mockup: {description}"):
                    await controller.try_on(description)

            elif command == "/photo":
                if not arg:
                    console.print("  [yellow]⚠ Usage: /photo <path>[/yellow]")
                    continue
                photo = ImagePart.from_path(arg)
                with console.status("Applying design to your photo..."):
                    await controller.try_on(CUSTOM_MODEL_DESCRIPTION, photo)

            elif command == "/design":
                controller.set_view_mode(ViewMode.DESIGN)
                console.print("  [dim]Now editing the design.[/dim]")
                continue

            elif command == "/view":
                controller.set_view_mode(ViewMode(arg or "design"))
                console.print(f"  [dim]Now editing the {arg or 'design'}.[/dim]")
                continue

            elif command == "/save":
                session = controller.session
                if session is None:
                    raise NoActiveDesignError("Nothing to save")
                path = save_design(session.active_image, output_dir)
                console.print(f"  [green]✓ Saved[/green] → {path}")
                continue

            elif command == "/export":
                designs = _session_designs(controller)
                name = arg or (controller.session.design_prompt if controller.session else "session")
                zip_path = create_session_zip(name, designs, output_dir)
                console.print(f"  [green]✓ Exported {len(designs)} file(s)[/green] → {zip_path}")
                continue

            elif command.startswith("/"):
                console.print(f"  [yellow]⚠ Unknown command {command}[/yellow]")
                continue

            else:
                with console.status("Refining..."):
                    await controller.handle_instruction(user_input)

        except (VylloError, ValueError, OSError) as exc:
            console.print(f"  [yellow]⚠ {exc}[/yellow]")
            continue

        for turn in controller.transcript[before:]:
            if turn.role == "assistant":
                show_turn(turn, output_dir)


async def run_session(controller: ConversationController, args: argparse.Namespace, output_dir: Path, history: HistoryStore) -> None:
    prompt = args.prompt.strip() or Prompt.ask("What will you [bold magenta]create[/bold magenta] today?").strip()
    if not prompt:
        console.print("[dim]Nothing to create.[/dim]")
        return

    style = StickerStyle.parse(args.style)
    kind = KIND_CHOICES[args.kind]
    reference = ImagePart.from_path(args.reference) if args.reference else None

    console.print(f"\n[bold cyan]→ Generating {args.count} {kind.noun}(s): {prompt} ({style.value})[/bold cyan]")
    with console.status("Generating..."):
        designs = await controller.create(prompt, style, kind, args.count, reference)

    for design in designs:
        console.print(f"  [green]✓[/green] {save_design(design, output_dir)}")
    console.print(f"  [dim]{len(designs)} of {args.count} design(s) generated[/dim]\n")

    console.print(Rule("[bold]Refine[/bold]"))
    show_turn(controller.transcript[0], output_dir)
    await chat_loop(controller, output_dir, history)


# ── Main ──────────────────────────────────────────────────────────────────────

def _check_env(settings: Settings) -> None:
    if not settings.gemini_api_key:
        console.print("[bold red]Error:[/bold red] GEMINI_API_KEY not set.")
        console.print("Add it to your environment or a .env file.")
        sys.exit(1)


def main(argv: Optional[List[str]] = None) -> None:
    args = parse_args(argv)
    setup_logging(args.verbose)
    settings = get_settings()
    history = JsonlHistoryStore(Path(args.history) if args.history else settings.history_path)

    if args.list_history:
        show_history(history)
        return

    _check_env(settings)
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    output_dir = Path(args.output) if args.output else settings.output_dir / timestamp
    output_dir.mkdir(parents=True, exist_ok=True)

    console.print(Rule("[bold magenta]Vyllo[/bold magenta]"))
    console.print(f"  Output: [bold]{output_dir}[/bold]  |  History: [bold]{history.path}[/bold]")

    controller = build_controller(settings, history=history)
    try:
        asyncio.run(run_session(controller, args, output_dir, history))
    except (VylloError, ValueError) as exc:
        console.print(f"[bold red]✗ {exc}[/bold red]")
        sys.exit(1)
    except KeyboardInterrupt:
        console.print("\n[dim]Bye.[/dim]")


if __name__ == "__main__":
    main()
