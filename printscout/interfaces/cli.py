"""CLI interface: search loop, colors, slash commands for sort, paging and filters.

Every line issues a new query while earlier ones may still be in flight; the
orchestrator guarantees only the newest one is ever printed.
"""

import asyncio
import shutil
import sys

import httpx
from pydantic import ValidationError

from printscout.contracts.catalog_v1 import PublishPhase, QueryRequest, SearchSnapshot, SortBy
from printscout.core.bootstrap import build_orchestrator, build_query_enhancer
from printscout.core.config import config
from printscout.core.errors import SourceUnavailableError
from printscout.core.logger import logger
from printscout.interfaces.formatting import format_enhancement, format_snapshot


class Colors:
    RESET = "\033[0m"
    BOLD = "\033[1m"
    DIM = "\033[2m"

    # Foreground
    RED = "\033[31m"
    GREEN = "\033[32m"
    YELLOW = "\033[33m"
    CYAN = "\033[36m"
    MAGENTA = "\033[35m"


def colorize(text: str, *colors: str) -> str:
    color_codes = "".join(colors)
    return f"{color_codes}{text}{Colors.RESET}"


def print_banner():
    banner = """
    ╭───────────────────────────────────────────╮
    │   PrintScout                              │
    │   3D model search: local + Thingiverse    │
    ╰───────────────────────────────────────────╯
    """
    print(colorize(banner, Colors.CYAN))


def print_help():
    help_text = """
    ╭──────────────────────────────────────────────────────────╮
    │  Commands                                                │
    ├──────────────────────────────────────────────────────────┤
    │  <text>           - Search (empty: trending this week)   │
    │  /sort <mode>     - relevance|popularity|newest|oldest   │
    │                     or "default"                         │
    │  /page <n>        - Go to page n                         │
    │  /free yes|no|any - Free / paid / all models             │
    │  /external        - Toggle external search               │
    │  /pla             - Toggle PLA compatibility filter      │
    │  /tag a,b         - Filter by tag names (empty: clear)   │
    │  /category <name> - Filter by category (empty: clear)    │
    │  /ai <text>       - AI-assisted search with suggested    │
    │                     tags and category                    │
    │  /help            - Show this help                       │
    │  /quit            - Exit                                 │
    ╰──────────────────────────────────────────────────────────╯
    """
    print(colorize(help_text, Colors.CYAN))


class SearchState:
    """Mutable form state; each change produces a fresh immutable QueryRequest."""

    def __init__(self):
        self.query = ""
        self.sort_by: SortBy | None = None
        self.page = 1
        self.is_free: bool | None = None
        self.include_external = True
        self.material_compatible = True
        self.tag_ids: frozenset[str] = frozenset()
        self.category_id: str | None = None

    def to_request(self) -> QueryRequest:
        return QueryRequest(
            query=self.query,
            sort_by=self.sort_by,
            page=self.page,
            page_size=config.default_page_size,
            is_free=self.is_free,
            include_external=self.include_external,
            material_compatible=self.material_compatible,
            tag_ids=self.tag_ids,
            category_id=self.category_id,
        )

    def describe(self) -> str:
        parts = [f"sort={self.sort_by or 'default'}", f"page={self.page}"]
        if self.is_free is not None:
            parts.append("free" if self.is_free else "paid")
        parts.append(f"external={'on' if self.include_external else 'off'}")
        parts.append(f"pla={'on' if self.material_compatible else 'off'}")
        if self.tag_ids:
            parts.append(f"tags={len(self.tag_ids)}")
        if self.category_id:
            parts.append(f"category={self.category_id}")
        return " ".join(parts)


def _print_snapshot(snapshot: SearchSnapshot) -> None:
    color = Colors.DIM if snapshot.phase == PublishPhase.PARTIAL else Colors.RESET
    sys.stdout.write("\r" + " " * shutil.get_terminal_size().columns + "\r")
    print(colorize(format_snapshot(snapshot), color))


async def apply_command(
    command: str, argument: str, state: SearchState, orchestrator, enhancer=None
) -> bool:
    """Update state from a slash command. Returns True when the query should be reissued."""
    if command == "/sort":
        value = argument.lower()
        if value in ("", "default"):
            state.sort_by = None
        else:
            try:
                state.sort_by = SortBy(value)
            except ValueError:
                print(colorize(f"  Unknown sort: {argument}", Colors.RED))
                return False
        state.page = 1
        return True

    if command == "/page":
        try:
            page = int(argument)
        except ValueError:
            print(colorize("  Usage: /page <n>", Colors.RED))
            return False
        if page < 1:
            print(colorize("  Pages start at 1", Colors.RED))
            return False
        state.page = page
        return True

    if command == "/free":
        choices = {"yes": True, "no": False, "any": None, "": None}
        if argument.lower() not in choices:
            print(colorize("  Usage: /free yes|no|any", Colors.RED))
            return False
        state.is_free = choices[argument.lower()]
        state.page = 1
        return True

    if command == "/external":
        state.include_external = not state.include_external
        state.page = 1
        return True

    if command == "/pla":
        state.material_compatible = not state.material_compatible
        state.page = 1
        return True

    if command == "/tag":
        names = [n.strip() for n in argument.split(",") if n.strip()]
        if not names:
            state.tag_ids = frozenset()
        elif orchestrator.reference is None:
            print(colorize("  Tag lookup is not available", Colors.RED))
            return False
        else:
            try:
                state.tag_ids = await orchestrator.reference.resolve_tag_ids(names)
            except (httpx.HTTPError, SourceUnavailableError, ValueError) as e:
                print(colorize(f"  Could not load tags: {e}", Colors.RED))
                return False
            if not state.tag_ids:
                print(colorize("  No matching tags", Colors.YELLOW))
                return False
        state.page = 1
        return True

    if command == "/category":
        if not argument:
            state.category_id = None
        elif orchestrator.reference is None:
            print(colorize("  Category lookup is not available", Colors.RED))
            return False
        else:
            try:
                category_id = await orchestrator.reference.resolve_category_id(argument)
            except (httpx.HTTPError, SourceUnavailableError, ValueError) as e:
                print(colorize(f"  Could not load categories: {e}", Colors.RED))
                return False
            if category_id is None:
                print(colorize(f"  No category named {argument!r}", Colors.YELLOW))
                return False
            state.category_id = category_id
        state.page = 1
        return True

    if command == "/ai":
        text = argument or state.query
        if not text:
            print(colorize("  Usage: /ai <what you are looking for>", Colors.RED))
            return False
        if enhancer is None:
            enhancer = build_query_enhancer(orchestrator.reference)
        state.query = text
        try:
            request, enhancement = await enhancer.enhance_request(state.to_request())
        except ValidationError as e:
            print(colorize(f"  Invalid search: {e}", Colors.RED))
            return False
        print(colorize(format_enhancement(enhancement), Colors.DIM))
        state.query = request.query
        state.tag_ids = request.tag_ids
        state.category_id = request.category_id
        state.page = 1
        return True

    print(colorize(f"  Unknown command: {command} (try /help)", Colors.RED))
    return False


async def run_cli(initial_external: bool = True):
    state = SearchState()
    state.include_external = initial_external
    orchestrator = build_orchestrator(on_snapshot=_print_snapshot)
    enhancer = None

    print_banner()
    print(colorize("  Type a search, or /help for commands\n", Colors.DIM))
    try:
        while True:
            try:
                user_input = await asyncio.to_thread(
                    input, colorize("\n❯ ", Colors.GREEN, Colors.BOLD)
                )
            except EOFError:
                break
            text = user_input.strip()

            if text.lower() in ("/quit", "/exit", "/q"):
                break
            if text.lower() == "/help":
                print_help()
                continue

            if text.startswith("/"):
                command, _, argument = text.partition(" ")
                command = command.lower()
                if command == "/ai" and enhancer is None:
                    enhancer = build_query_enhancer(orchestrator.reference)
                reissue = await apply_command(
                    command, argument.strip(), state, orchestrator, enhancer
                )
                if not reissue:
                    continue
            else:
                state.query = text
                state.page = 1

            try:
                request = state.to_request()
            except ValidationError as e:
                print(colorize(f"  Invalid search: {e}", Colors.RED))
                continue
            print(colorize(f"  {state.describe()}", Colors.DIM))
            orchestrator.issue(request)
    except KeyboardInterrupt:
        pass
    except Exception as e:
        logger.error(f"Error during search loop: {e}", exc_info=True)
        print(colorize(f"\n  Error: {e}", Colors.RED))
    finally:
        await orchestrator.aclose()
        print(colorize("\n  Goodbye!\n", Colors.MAGENTA))

