"""Entry point: cli | oneshot."""

import asyncio
import sys

USAGE = (
    "Usage: printscout [cli [--local-only]] | "
    "[oneshot [--free|--paid] [--sort S] [--page N] [--local-only] [--no-pla] [--ai] query...]"
)


def parse_oneshot_args(args: list[str]) -> dict:
    """Flags and query words for oneshot mode. Raises ValueError on bad flags."""
    options: dict = {
        "is_free": None,
        "sort_by": None,
        "page": 1,
        "use_external": True,
        "material_compatible": True,
        "ai": False,
    }
    query_parts: list[str] = []
    i = 0
    while i < len(args):
        arg = args[i]
        if arg == "--free":
            options["is_free"] = True
        elif arg == "--paid":
            options["is_free"] = False
        elif arg == "--local-only":
            options["use_external"] = False
        elif arg == "--no-pla":
            options["material_compatible"] = False
        elif arg == "--ai":
            options["ai"] = True
        elif arg in ("--sort", "--page"):
            if i + 1 >= len(args):
                raise ValueError(f"{arg} needs a value")
            value = args[i + 1]
            if arg == "--sort":
                options["sort_by"] = value
            else:
                try:
                    options["page"] = int(value)
                except ValueError:
                    raise ValueError(f"--page expects a number, got {value!r}") from None
            i += 1
        else:
            query_parts.append(arg)
        i += 1
    options["query"] = " ".join(query_parts).strip()
    return options


def main():
    mode = "cli"
    if len(sys.argv) > 1:
        mode = sys.argv[1].lower()

    if mode == "cli":
        from printscout.interfaces.cli import run_cli

        initial_external = "--local-only" not in sys.argv[2:]
        try:
            asyncio.run(run_cli(initial_external=initial_external))
        except KeyboardInterrupt:
            pass

    elif mode == "oneshot":
        from printscout.interfaces.oneshot import main as run_oneshot_main

        try:
            options = parse_oneshot_args(sys.argv[2:])
        except ValueError as e:
            print(f"Error: {e}")
            print(USAGE)
            sys.exit(2)
        query = options.pop("query")
        if not query and not sys.stdin.isatty():
            query = sys.stdin.read().strip()
        sys.exit(run_oneshot_main(query, **options))

    else:
        print(f"Unknown mode: {mode}")
        print(USAGE)
        sys.exit(1)


if __name__ == "__main__":
    main()
