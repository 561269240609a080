import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import IO, Callable, Optional

from keynginx.config import config
from keynginx.errors import ContainerNotFoundError, RuntimeClientError, StorageError, ValidationError
from keynginx.models import NOT_FOUND, ContainerDetail, ProjectStatus
from keynginx.output import Output
from keynginx.project import ProjectConfig
from keynginx.runtime import RuntimeClient


class ContainerState(Enum):
  NOT_FOUND = "not-found"
  RUNNING = "running"
  EXITED = "exited"
  OTHER_STOPPED = "other"

  @classmethod
  def of(cls, status: ProjectStatus) -> 'ContainerState':
    match status.status:
      case "not-found": return cls.NOT_FOUND
      case "running": return cls.RUNNING
      case "exited": return cls.EXITED
    return cls.OTHER_STOPPED


@dataclass
class UpResult:
  action: str    # created | recreated | restarted | already-running
  status: ProjectStatus
  container_id: str = ""
  ready: bool = True
  warnings: list[str] = field(default_factory=list)


@dataclass
class DownResult:
  action: str    # removed | stopped | not-found
  status: ProjectStatus
  warnings: list[str] = field(default_factory=list)


##
# Status resolution
##
class StatusResolver:
  """Map what the runtime reports for a project onto a ProjectStatus"""

  def __init__(self, client: RuntimeClient):
    self.client = client

  def get_project_status(self, project: ProjectConfig) -> ProjectStatus:
    name = project.container_name
    summary = self.client.find_by_name(name)
    if summary is None:
      return ProjectStatus(
        project_name=project.project.name,
        domain=project.domain,
        container_name=name,
      )

    detail = self.client.inspect(summary.id)
    return ProjectStatus(
      project_name=project.project.name,
      domain=project.domain,
      container_name=name,
      container_id=detail.id,
      status=detail.state,
      message=detail.status,
      ports=detail.ports,
      created=detail.created,
      image=detail.image,
    )

  def list_all(self) -> list[ContainerDetail]:
    """Inspect every keynginx container, one at a time"""
    return [self.client.inspect(c.id) for c in self.client.list_keynginx()]


##
# Lifecycle state machine
##
class LifecycleController:
  """Drive a project's container towards the requested state"""

  def __init__(self, client: RuntimeClient,
               poll_interval: float = config.poll_interval,
               ready_timeout: float = config.ready_timeout,
               sleep: Callable[[float], None] = time.sleep,
               clock: Callable[[], float] = time.monotonic):
    self.client = client
    self.resolver = StatusResolver(client)
    self.poll_interval = poll_interval
    self.ready_timeout = ready_timeout
    self.sleep = sleep
    self.clock = clock
    self.output = Output()

  def status(self, project: ProjectConfig) -> ProjectStatus:
    return self.resolver.get_project_status(project)

  def up(self, project: ProjectConfig, project_dir: Path, recreate: bool = False) -> UpResult:
    project.validate()
    status = self.status(project)
    state = ContainerState.of(status)
    self.output.debug(f"{status.container_name}: {state.value}, recreate={recreate}")

    if state is ContainerState.RUNNING and not recreate:
      return UpResult("already-running", status, status.container_id)

    if state is not ContainerState.NOT_FOUND:
      if recreate:
        self._stop_and_remove(status, config.stop_timeout)
        return self._create_and_start(project, project_dir, "recreated")

      self._call("restart existing container", self.client.restart, status.container_id, config.stop_timeout)
      status = self.status(project)
      return UpResult("restarted", status, status.container_id, ready=status.is_running())

    return self._create_and_start(project, project_dir, "created")

  def down(self, project: ProjectConfig, remove: bool = True, force: bool = False) -> DownResult:
    status = self.status(project)
    if not status.is_found():
      return DownResult(NOT_FOUND, status, [f"No container found for domain '{project.domain}', nothing to stop"])

    timeout = config.quick_stop_timeout if force else config.stop_timeout
    if remove:
      self._stop_and_remove(status, timeout)
      return DownResult("removed", status)

    self._call("stop container", self.client.stop, status.container_id, timeout)
    return DownResult("stopped", status)

  def restart(self, project: ProjectConfig) -> ProjectStatus:
    status = self._require(project)
    self._call("restart container", self.client.restart, status.container_id, config.stop_timeout)
    return self.status(project)

  def logs(self, project: ProjectConfig, follow: bool = False, tail: str = config.log_tail) -> IO[str]:
    status = self._require(project)
    return self._call("get container logs", self.client.logs, status.container_id, follow, tail)

  def wait_until_running(self, project: ProjectConfig) -> bool:
    """Poll until the container reports running; False once the timeout passes"""
    deadline = self.clock() + self.ready_timeout
    while True:
      self.sleep(self.poll_interval)
      if self.status(project).is_running():
        return True
      if self.clock() >= deadline:
        return False

  # --------------------------------------
  # Transition steps
  # --------------------------------------
  def _require(self, project: ProjectConfig) -> ProjectStatus:
    status = self.status(project)
    if not status.is_found():
      raise ContainerNotFoundError(status.container_name)
    return status

  def _call(self, step: str, fn, *args, prefix: str = ""):
    try:
      return fn(*args)
    except RuntimeClientError as e:
      if e.step == step and not prefix:
        raise
      detail = e.detail if e.step == step else str(e)
      raise RuntimeClientError(step, f"{prefix}{detail}") from e

  def _stop_and_remove(self, status: ProjectStatus, timeout: int):
    self._call("stop container", self.client.stop, status.container_id, timeout)
    self._call("remove container", self.client.remove, status.container_id, False)

  def _create_and_start(self, project: ProjectConfig, project_dir: Path, action: str) -> UpResult:
    project_dir = Path(project_dir)
    check_project_files(project_dir)

    container_id = self._call("create container", self.client.create, project.container_config(project_dir))
    self._call("start container", self.client.start, container_id,
               prefix="container created but failed to start: ")

    warnings = []
    ready = self.wait_until_running(project)
    if not ready:
      warnings.append("timeout waiting for container to start, it may not be fully ready")
    return UpResult(action, self.status(project), container_id, ready, warnings)


def check_project_files(project_dir: Path):
  """Files the container mounts must exist; logs/ is created on demand"""
  required = {
    'nginx_conf': "Nginx configuration file",
    'private_key': "SSL private key",
    'certificate': "SSL certificate",
  }
  for key, description in required.items():
    path = project_dir / config.project_files[key]
    if not path.is_file():
      raise ValidationError(
        f"{description} not found: {path}\n\nRun '{config.bin_name} init' to generate required files"
      )

  logs_dir = project_dir / config.project_files['logs_dir']
  try:
    logs_dir.mkdir(parents=True, exist_ok=True)
  except OSError as e:
    raise StorageError(f"failed to create logs directory ({e.strerror})", logs_dir) from e
