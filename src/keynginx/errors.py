from pathlib import Path
from typing import Optional


class KeynginxError(Exception):
  """Base class for every error the CLI reports to the user."""


class ValidationError(KeynginxError):
  """Bad request or configuration values, raised before any side effect."""


class GenerationError(KeynginxError):
  """Key or certificate could not be produced."""


class StorageError(KeynginxError):
  """Reading or writing a project file failed."""

  def __init__(self, message: str, path: Optional[Path] = None):
    super().__init__(f"{message}: {path}" if path else message)
    self.path = path


class ConfigNotFoundError(KeynginxError):
  """No keynginx.yaml in the project directory."""


class RuntimeUnavailableError(KeynginxError):
  """The container runtime cannot be reached at all."""


class RuntimeClientError(KeynginxError):
  """A single runtime call failed; the message names the step."""

  def __init__(self, step: str, detail: str = ""):
    super().__init__(f"failed to {step}: {detail}" if detail else f"failed to {step}")
    self.step = step
    self.detail = detail


class ContainerNotFoundError(KeynginxError):
  """An operation needs a container that does not exist."""

  def __init__(self, name: str):
    super().__init__(f"container {name} not found")
    self.name = name
