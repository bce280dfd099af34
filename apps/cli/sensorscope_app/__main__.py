from __future__ import annotations

import sys

if __package__:
    from .cli import main as _cli_main
else:
    # Executed as a plain script path.
    from sensorscope_app.cli import main as _cli_main


DEFAULT_COMMAND = "run"


def with_default_command(args: list[str]) -> list[str]:
    """``sensorscope`` and ``sensorscope --seconds 10`` both mean ``sensorscope run ...``."""
    if not args:
        return [DEFAULT_COMMAND]
    if args[0].startswith("-") and args[0] not in ("-h", "--help"):
        return [DEFAULT_COMMAND, *args]
    return list(args)


def main(argv: list[str] | None = None) -> int:
    args = with_default_command(sys.argv[1:] if argv is None else argv)
    try:
        return int(_cli_main(args))
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    raise SystemExit(main())
