import json
from typing import Any

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel

# kind: (glyph, plain-text glyph, style)
MESSAGE_KINDS = {
  'ok':      ("✓", "[ok]", "bold green"),
  'error':   ("✗", "[x]", "bold red"),
  'warning': ("⚠", "[!]", "bold yellow"),
  'info':    ("ℹ", "[i]", "bold blue"),
  'debug':   ("⚙", "[d]", "dim"),
}

# container state: (marker, style)
STATE_STYLES = {
  'running':   ("●", "green"),
  'not-found': ("○", "yellow"),
  'exited':    ("●", "red"),
}


class SingletonMeta(type):
  _instances = {}

  def __call__(cls, *args, **kwargs):
    if cls not in cls._instances:
      cls._instances[cls] = super().__call__(*args, **kwargs)
    return cls._instances[cls]

##
# Terminal output for keynginx commands
##
class Output(metaclass=SingletonMeta):
  """One console pair for the process; `--verbose` and `--no-color` are fixed by the CLI group"""

  def __init__(self, verbose: bool = False, no_color: bool = None):
    if hasattr(self, 'console'):
      return
    self.is_verbose = verbose
    self.plain = bool(no_color)
    self.console = Console(no_color=no_color, highlight=False)
    self.error_console = Console(stderr=True, no_color=no_color)

  def _mark(self, kind: str) -> tuple[str, str]:
    glyph, plain, style = MESSAGE_KINDS[kind]
    return escape(plain) if self.plain else glyph, style

  def _message(self, kind: str, message: str, console: Console = None, whole_line: bool = True):
    mark, style = self._mark(kind)
    line = f"[{style}]{mark} {message}[/{style}]" if whole_line else f"[{style}]{mark}[/{style}] {message}"
    (console or self.console).print(line)

  def state_label(self, state: str) -> str:
    marker, style = STATE_STYLES.get(state, ("●", "magenta"))
    text = "not found" if state == 'not-found' else state
    return f"[{style}]{marker} {text}[/{style}]"

  def success(self, message: str):
    self._message('ok', message)

  def error(self, message: str):
    self._message('error', message, console=self.error_console)

  def warning(self, message: str):
    self._message('warning', message)

  def info(self, message: str):
    self._message('info', message, whole_line=False)

  def debug(self, message: str):
    if self.is_verbose:
      self._message('debug', escape(message))

  def verbose_panel(self, content: str, title: str = "", border_style: str = "cyan"):
    if self.is_verbose:
      self.panel(content, title=title, border_style=border_style)

  def panel(self, content: str, title: str = "", border_style: str = "cyan", width: int = 80):
    self.console.print(Panel(content, title=title, border_style=border_style, width=width))

  def json(self, data: Any):
    self.console.print_json(json.dumps(data, default=str))

  def status(self, message: str):
    return self.console.status(f"[bold green]{message}")

  def header(self, message: str):
    self.console.rule(f"[bold cyan]{message}[/bold cyan]")
