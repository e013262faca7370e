#!/usr/bin/env python3
"""
Ask System - an interactive shell for asking questions about this machine
"""

import argparse
import logging
import sys
from pathlib import Path

from prompt_toolkit import PromptSession
from prompt_toolkit.formatted_text import HTML
from prompt_toolkit.history import FileHistory
from prompt_toolkit.key_binding import KeyBindings
from prompt_toolkit.styles import Style
from rich.console import Console
from rich.logging import RichHandler
from rich.markdown import Markdown
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table
from rich.theme import Theme

import i18n
from agent_context import AgentConfig, AgentContext, STATUS_READY
from query_resolver import QueryResolver
from system_info import SystemInfoProvider

ACCENT = "#3b8eea"

_theme = Theme({
    "markdown.code": f"bold {ACCENT}",
    "markdown.list": ACCENT,
    "markdown.link": "bold #fabd2f",
})
console = Console(theme=_theme)

prompt_style = Style.from_dict(
    {
        "prompt": f"{ACCENT} bold",
        "input": "#ffffff",
    }
)


class AskSystemShell:
    def __init__(self, config: AgentConfig, debug: bool = False):
        self.session = None
        self.debug = debug
        self.context = AgentContext(config)
        self.resolver = QueryResolver(self.context)

        console.print(f"🔍 {i18n.t('cli.initializing')}", style=ACCENT)
        with console.status(f"[{ACCENT}]{i18n.t('cli.connecting')}[/]", spinner="dots"):
            ok = self.context.initialize(on_status=self._print_status)

        if not ok:
            console.print(
                f"⚠️  {i18n.t('cli.basic_mode', error=self.context.init_error)}",
                style="yellow",
            )

    @staticmethod
    def _print_status(message: str) -> None:
        style = "green" if message == STATUS_READY else "dim"
        console.print(f"  {message}", style=style)

    def setup_prompt_session(self):
        """Setup prompt_toolkit session with history"""
        history_file = Path.home() / ".ask_system_history"

        kb = KeyBindings()

        @kb.add("escape", "enter")
        def _(event):
            event.current_buffer.insert_text("\n")

        def _bottom_toolbar():
            return HTML(
                ' <b>Esc+Enter</b> {newline}'
                ' │ <b>↑↓</b> {history}'
                ' │ <b>/info</b> │ <b>/help</b> │ <b>/exit</b> '.format(
                    newline=i18n.t('cli.toolbar.newline'),
                    history=i18n.t('cli.toolbar.history'),
                )
            )

        self.session = PromptSession(
            history=FileHistory(str(history_file)),
            style=prompt_style,
            multiline=False,
            key_bindings=kb,
            bottom_toolbar=_bottom_toolbar,
        )

    def print_welcome(self):
        """Display welcome message"""
        mode = (
            i18n.t('cli.mode_ai', model=self.context.config.model_name)
            if self.context.llm_available
            else i18n.t('cli.mode_basic')
        )
        console.print(Panel(Markdown(i18n.t('cli.welcome', mode=mode)), border_style=ACCENT))
        console.print()

    def _build_system_info_table(self) -> Table:
        """Build a Rich Table of the current system snapshot."""
        table = Table(show_header=False, box=None, padding=(0, 2), expand=True)
        table.add_column("Label", style=f"bold {ACCENT}", no_wrap=True)
        table.add_column("Value", style="#ebdbb2")

        fields = SystemInfoProvider().snapshot_fields()
        if not fields:
            table.add_row(f"[dim]{i18n.t('cli.info_unavailable')}[/]", "")
        for f in fields:
            table.add_row(f["label"], f["value"])
        return table

    def handle_special_command(self, user_input: str) -> bool:
        """Handle special commands. Returns True if the app should exit."""
        command = user_input.strip().lower()

        if command in ["/exit", "/quit"]:
            console.print(f"\n👋 {i18n.t('cli.goodbye')}", style=ACCENT)
            return True
        elif command == "/clear":
            console.clear()
            self.print_welcome()
        elif command == "/help":
            self.print_welcome()
        elif command == "/info":
            console.print(Panel(self._build_system_info_table(), border_style=ACCENT))
        else:
            console.print(i18n.t('cli.unknown_command', command=command), style="yellow")

        return False

    def get_response(self, user_message: str, max_retries: int) -> str:
        """Resolve a question and render the envelope to the terminal."""
        with console.status(f"[{ACCENT}]{i18n.t('cli.thinking')}[/]", spinner="dots"):
            envelope = self.resolver.resolve(user_message, max_retries)

        console.print(Markdown(envelope.interpretation))

        if self.debug:
            if envelope.command:
                console.print()
                console.print(Panel(
                    Syntax(envelope.command, "powershell" if self.context.config.shell == "powershell" else "bash",
                           word_wrap=True),
                    title=i18n.t('cli.command_title'),
                    border_style="dim",
                ))
            if envelope.raw_output:
                console.print(Panel(
                    Syntax(envelope.raw_output[:4000], "json", word_wrap=True),
                    title=i18n.t('cli.raw_output_title'),
                    border_style="dim",
                ))
        console.print()
        return envelope.interpretation

    def run(self, max_retries: int):
        """Main interactive loop"""
        self.setup_prompt_session()
        self.print_welcome()

        try:
            while True:
                try:
                    user_input = self.session.prompt([("class:prompt", "❯ ")])

                    if not user_input.strip():
                        continue

                    if user_input.startswith("/"):
                        if self.handle_special_command(user_input):
                            break
                        continue

                    console.print()
                    self.get_response(user_input, max_retries)

                except KeyboardInterrupt:
                    console.print(f"\n💡 {i18n.t('cli.exit_hint')}", style="yellow")
                    continue
                except EOFError:
                    console.print(f"\n👋 {i18n.t('cli.goodbye')}", style=ACCENT)
                    break

        except Exception as e:
            console.print(f"\n❌ {i18n.t('cli.fatal_error', error=str(e))}", style="bold red")
            sys.exit(1)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description=i18n.t('cli.arg_description'),
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  ask-system                                  # Interactive shell
  ask-system -q "how many cores do I have?"   # One question, then exit
  ask-system --model llama3.1 --base-url http://localhost:11434/v1
        """,
    )
    parser.add_argument("--query", "-q", default=None, help=i18n.t('cli.arg_query'))
    parser.add_argument("--model", "-m", default=None, help=i18n.t('cli.arg_model'))
    parser.add_argument("--base-url", default=None, help=i18n.t('cli.arg_base_url'))
    parser.add_argument(
        "--shell", choices=["bash", "powershell"], default=None, help=i18n.t('cli.arg_shell')
    )
    parser.add_argument("--retries", type=int, default=None, help=i18n.t('cli.arg_retries'))
    parser.add_argument("--debug", action="store_true", help=i18n.t('cli.arg_debug'))
    return parser


def config_from_args(args: argparse.Namespace) -> AgentConfig:
    """Environment config with command-line overrides applied."""
    config = AgentConfig.from_env()
    if args.model:
        config.model_name = args.model
    if args.base_url:
        config.base_url = args.base_url
    if args.shell:
        config.shell = args.shell
    if args.retries is not None and args.retries >= 0:
        config.max_retries = args.retries
    return config


def main():
    """Entry point"""
    i18n.init()

    args = build_parser().parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
    )

    config = config_from_args(args)
    shell = AskSystemShell(config, debug=args.debug)

    if args.query:
        shell.get_response(args.query, config.max_retries)
        return

    shell.run(config.max_retries)


if __name__ == "__main__":
    main()
