"""Interactive chat prompt (prompt_toolkit-based).

Kept apart from the CLI wiring so the loop can be driven from tests with a
pipe input and ``DummyOutput``.
"""

from __future__ import annotations

from collections.abc import Callable

from prompt_toolkit import PromptSession
from prompt_toolkit.completion import WordCompleter
from prompt_toolkit.history import InMemoryHistory

EXIT_COMMANDS = ("/quit", "/exit")
HELP_COMMAND = "/help"

HELP_TEXT = (
    "Ask an accounting question, paste a transaction hash, or ask to analyse a wallet "
    "address. Type /quit to leave."
)


def chat_loop(
    handle: Callable[[str], None],
    *,
    session: PromptSession | None = None,
    show_help: Callable[[str], None] | None = None,
    message: str = "you> ",
) -> int:
    """Read messages until EOF or an exit command; return how many were handled.

    ``handle`` receives each non-empty message. Ctrl-C abandons the current
    line without leaving the loop.
    """

    completer = WordCompleter([*EXIT_COMMANDS, HELP_COMMAND], sentence=True)
    if session is None:
        sess: PromptSession = PromptSession(history=InMemoryHistory(), completer=completer)
    else:
        sess = PromptSession(
            input=getattr(session, "input", None),
            output=getattr(session, "output", None),
            completer=completer,
        )

    handled = 0
    while True:
        try:
            line = sess.prompt(message)
        except KeyboardInterrupt:
            continue
        except EOFError:
            break
        text = line.strip()
        if not text:
            continue
        if text.lower() in EXIT_COMMANDS:
            break
        if text.lower() == HELP_COMMAND:
            if show_help is not None:
                show_help(HELP_TEXT)
            continue
        handle(text)
        handled += 1
    return handled


__all__ = ["EXIT_COMMANDS", "HELP_TEXT", "chat_loop"]
