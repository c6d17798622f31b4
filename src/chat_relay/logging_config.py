import logging

from rich.logging import RichHandler

LOGGER_NAMES = ("chat_relay", "uvicorn", "uvicorn.access", "uvicorn.error")


def setup_logging(level: str = "INFO", show_path: bool = False) -> None:
    """Route chat_relay and uvicorn logs through one rich console handler."""
    handler = RichHandler(rich_tracebacks=True, show_path=show_path, markup=False)
    handler.setFormatter(logging.Formatter("%(name)s: %(message)s", datefmt="[%X]"))

    root = logging.getLogger()
    for existing in root.handlers[:]:
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level)

    for name in LOGGER_NAMES:
        named = logging.getLogger(name)
        named.handlers.clear()
        named.propagate = True
        named.setLevel(level)
