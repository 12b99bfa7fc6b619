"""
Diagnostics and logging setup for Ojo
"""

import logging
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler


# Rich console shared by logging and the terminal host
console = Console()

DEFAULT_FORMAT = "%(name)s - %(message)s"
FILE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def enable_diagnostics(
    level: str = "INFO",
    log_file: Optional[str] = None,
    use_rich: bool = True,
    format: str = DEFAULT_FORMAT,
):
    """Enable logging with the specified configuration.

    Installs a Rich console handler on the root logger and, when
    ``log_file`` is given, a plain file handler next to it. Calling it
    again replaces the handlers installed by the previous call.
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    if use_rich:
        handler = RichHandler(
            console=console,
            show_time=True,
            show_path=False,
        )
    else:
        handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(format))
    handler._ojo_handler = True

    root_logger = logging.getLogger()
    for existing in list(root_logger.handlers):
        if getattr(existing, "_ojo_handler", False):
            root_logger.removeHandler(existing)
            existing.close()

    root_logger.setLevel(log_level)
    root_logger.addHandler(handler)

    if log_file:
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(FILE_FORMAT))
        file_handler._ojo_handler = True
        root_logger.addHandler(file_handler)

    logging.getLogger("ojo").setLevel(log_level)

    # requests/urllib3 are chatty at DEBUG
    logging.getLogger("urllib3").setLevel(max(log_level, logging.INFO))
