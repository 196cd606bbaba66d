"""
Central Logging and Console Utilities.

All engine and CLI output goes through the standard `logging` library, rendered
by `rich`. The module exposes:

1.  A `scope_lift` logger with an extra SUCCESS level and thin adapters
    (`log_info`, `log_success`, `log_warning`, `log_error`).
2.  A Console proxy whose backend can be swapped at runtime (`set_console`),
    used by the CLI tests to capture tables and log lines in memory.

Attributes:
    console (_ConsoleProxy): Stable module-level reference to the active Rich Console.
    logger (logging.Logger): The package logger.
"""

import logging
from typing import Any

from rich.console import Console
from rich.logging import RichHandler
from rich.theme import Theme

SUCCESS_LEVEL_NUM = 25
logging.addLevelName(SUCCESS_LEVEL_NUM, "SUCCESS")

_THEME = Theme(
  {
    "logging.level.success": "green",
    "info": "dim cyan",
    "warning": "yellow",
    "error": "bold red",
    "success": "green",
    "path": "bold blue",
    "code": "bold magenta",
    "kind": "bold cyan",
  }
)

logger = logging.getLogger("scope_lift")


class _ConsoleProxy:
  """
  Proxy around `rich.console.Console`.

  Keeps one module-level `console` object while allowing the backend to be
  replaced (for example by a recording console in tests). Replacing the backend
  also re-points the package logger's RichHandler.

  Attributes:
      _backend (Console): The active Rich Console instance.
  """

  def __init__(self) -> None:
    self._backend: Console = Console(theme=_THEME)
    self._configure_logging()

  def set_backend(self, new_console: Console) -> None:
    """
    Injects a new Console backend and updates logging handlers.

    Args:
        new_console (Console): The new Rich Console instance to use.
    """
    self._backend = new_console
    self._configure_logging()

  def reset(self) -> None:
    """Resets the proxy to a fresh standard output console."""
    self._backend = Console(theme=_THEME)
    self._configure_logging()

  @property
  def backend(self) -> Console:
    """The currently active Console."""
    return self._backend

  def _configure_logging(self) -> None:
    """
    Attaches a single RichHandler bound to the current backend to the package logger.
    """
    for handler in list(logger.handlers):
      if isinstance(handler, RichHandler):
        logger.removeHandler(handler)

    rich_handler = RichHandler(
      console=self._backend,
      show_time=False,
      omit_repeated_times=False,
      show_path=False,
      markup=True,
      rich_tracebacks=True,
    )
    logger.setLevel(logging.INFO)
    logger.addHandler(rich_handler)
    logger.propagate = False

  def print(self, *args: Any, **kwargs: Any) -> None:
    """Forwards `print` calls to the active backend."""
    self._backend.print(*args, **kwargs)

  def export_text(self, **kwargs: Any) -> str:
    """
    Forwards `export_text` (useful for log capturing).

    Returns:
        str: The captured text output.
    """
    return self._backend.export_text(**kwargs)

  def __getattr__(self, name: str) -> Any:
    return getattr(self._backend, name)


console = _ConsoleProxy()


def set_console(new_console: Console) -> None:
  """
  Redirects console output and package logging to `new_console`.

  Args:
      new_console (Console): The configured Rich console to use.
  """
  console.set_backend(new_console)


def reset_console() -> None:
  """Restores logging and console output to standard output."""
  console.reset()


def set_verbosity(level: int) -> None:
  """
  Adjusts the package logger threshold.

  Args:
      level (int): A `logging` level such as `logging.DEBUG`.
  """
  logger.setLevel(level)


def log_debug(msg: str) -> None:
  """Logs a debug message."""
  logger.debug(msg, extra={"markup": True})


def log_info(msg: str) -> None:
  """
  Logs an informational message.

  Args:
      msg (str): The message content. Can include rich markup like [bold].
  """
  logger.info(f"ℹ️  {msg}", extra={"markup": True})


def log_success(msg: str) -> None:
  """Logs a success message at the custom SUCCESS level."""
  logger.log(SUCCESS_LEVEL_NUM, f"✅ {msg}", extra={"markup": True})


def log_warning(msg: str) -> None:
  """Logs a warning message."""
  logger.warning(f"⚠️  {msg}", extra={"markup": True})


def log_error(msg: str) -> None:
  """Logs an error message."""
  logger.error(f"❌ {msg}", extra={"markup": True})
