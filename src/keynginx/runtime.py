import io
import json
import subprocess
from abc import ABC, abstractmethod
from pathlib import Path
from subprocess import CompletedProcess
from typing import IO, Optional

from keynginx.config import config
from keynginx.errors import RuntimeClientError, RuntimeUnavailableError
from keynginx.models import ContainerConfig, ContainerDetail, ContainerSummary, is_keynginx_container
from keynginx.output import Output

DOCKER_HELP = """Please ensure Docker is installed and running:
  • macOS/Windows: Start Docker Desktop
  • Linux: sudo systemctl start docker

Install Docker: https://docs.docker.com/get-docker/"""


##
# Runtime client contract
##
class RuntimeClient(ABC):
  """Administrative operations the lifecycle layer needs from a container runtime"""

  @abstractmethod
  def ping(self): ...

  @abstractmethod
  def list_containers(self, all: bool = True) -> list[ContainerSummary]: ...

  @abstractmethod
  def inspect(self, container_id: str) -> ContainerDetail: ...

  @abstractmethod
  def create(self, container: ContainerConfig) -> str: ...

  @abstractmethod
  def start(self, container_id: str): ...

  @abstractmethod
  def stop(self, container_id: str, timeout: Optional[int] = None): ...

  @abstractmethod
  def restart(self, container_id: str, timeout: Optional[int] = None): ...

  @abstractmethod
  def remove(self, container_id: str, force: bool = False): ...

  @abstractmethod
  def logs(self, container_id: str, follow: bool = False, tail: str = config.log_tail) -> IO[str]: ...

  def find_by_name(self, name: str) -> Optional[ContainerSummary]:
    """Exact name lookup; runtimes may report names with a leading '/'"""
    for container in self.list_containers(all=True):
      for container_name in container.names:
        if container_name.removeprefix('/') == name:
          return container
    return None

  def list_keynginx(self) -> list[ContainerSummary]:
    return [c for c in self.list_containers(all=True) if is_keynginx_container(c)]


##
# Docker CLI implementation
##
class DockerClient(RuntimeClient):
  """Runtime client backed by the local `docker` command"""

  def __init__(self, binary: str = "docker"):
    self.binary = binary
    self.output = Output()

  def docker(self, args: list[str],
             step: str,
             timeout: Optional[int] = None) -> CompletedProcess:
    cmd = [self.binary, *args]
    self.output.debug(f"Running: {' '.join(cmd)}")
    try:
      return subprocess.run(
        cmd,
        capture_output=True,
        check=True,
        timeout=timeout,
        text=True
      )
    except FileNotFoundError as e:
      raise RuntimeUnavailableError(f"Docker is not available: '{self.binary}' not found\n\n{DOCKER_HELP}") from e
    except subprocess.TimeoutExpired as e:
      raise RuntimeClientError(step, f"timed out after {timeout}s") from e
    except subprocess.CalledProcessError as e:
      raise RuntimeClientError(step, (e.stderr or "").strip() or f"exit code {e.returncode}") from e

  def ping(self):
    try:
      self.docker(["info", "--format", "{{.ServerVersion}}"], step="reach Docker daemon", timeout=10)
    except RuntimeClientError as e:
      raise RuntimeUnavailableError(f"Docker is not available: {e.detail}\n\n{DOCKER_HELP}") from e

  def version(self) -> str:
    result = self.docker(
      ["version", "--format", "Client: {{.Client.Version}}, Server: {{.Server.Version}}"],
      step="get Docker version"
    )
    return result.stdout.strip()

  def info(self) -> dict:
    result = self.docker(["info", "--format", "{{json .}}"], step="get Docker info")
    return json.loads(result.stdout)

  def list_containers(self, all: bool = True) -> list[ContainerSummary]:
    args = ["ps", "--no-trunc", "--format", "{{json .}}"]
    if all:
      args.insert(1, "-a")
    result = self.docker(args, step="list containers")
    containers = []
    for line in result.stdout.strip().split('\n'):
      if line:
        containers.append(ContainerSummary.from_dict(json.loads(line)))
    return containers

  def inspect(self, container_id: str) -> ContainerDetail:
    result = self.docker(["inspect", "--type", "container", container_id], step="inspect container")
    data = json.loads(result.stdout)
    if not data:
      raise RuntimeClientError("inspect container", f"no data for {container_id}")
    return ContainerDetail.from_inspect(data[0])

  def ensure_network(self, network: str):
    try:
      self.docker(["network", "inspect", network], step="inspect network")
    except RuntimeClientError:
      self.docker(["network", "create", "--driver", "bridge", network], step="create network")

  def create(self, container: ContainerConfig) -> str:
    if self.find_by_name(container.name):
      raise RuntimeClientError("create container", f"container {container.name} already exists")

    self.ensure_network(container.network_name)

    project_dir = Path(container.project_dir)
    files, targets, labels = config.project_files, config.mount_targets, config.labels
    args = [
      "create",
      "--name", container.name,
      "--network", container.network_name,
      "--restart", "unless-stopped",
      "-p", f"0.0.0.0:{container.http_port}:80/tcp",
      "-p", f"0.0.0.0:{container.https_port}:443/tcp",
      "--mount", f"type=bind,source={project_dir / files['nginx_conf']},target={targets['nginx_conf']},readonly",
      "--mount", f"type=bind,source={(project_dir / files['private_key']).parent},target={targets['ssl_dir']},readonly",
      "--mount", f"type=bind,source={project_dir / files['logs_dir']},target={targets['logs_dir']}",
      "--label", f"{labels['owner_key']}={labels['owner_value']}",
      "--label", f"{labels['domain']}={container.domain}",
      "--label", f"{labels['version']}={config.version}",
      container.image,
    ]
    result = self.docker(args, step="create container")
    return result.stdout.strip()

  def start(self, container_id: str):
    self.docker(["start", container_id], step="start container")

  def stop(self, container_id: str, timeout: Optional[int] = None):
    args = ["stop", container_id]
    if timeout is not None:
      args[1:1] = ["--time", str(timeout)]
    self.docker(args, step="stop container")

  def restart(self, container_id: str, timeout: Optional[int] = None):
    args = ["restart", container_id]
    if timeout is not None:
      args[1:1] = ["--time", str(timeout)]
    self.docker(args, step="restart container")

  def remove(self, container_id: str, force: bool = False):
    args = ["rm", container_id]
    if force:
      args.insert(1, "--force")
    self.docker(args, step="remove container")

  def logs(self, container_id: str, follow: bool = False, tail: str = config.log_tail) -> IO[str]:
    """Stream of log lines (stdout and stderr merged); caller closes it"""
    cmd = [self.binary, "logs", "--timestamps", "--tail", str(tail)]
    if follow:
      cmd.append("--follow")
    cmd.append(container_id)
    self.output.debug(f"Running: {' '.join(cmd)}")
    try:
      proc = subprocess.Popen(cmd, stdout=subprocess.PIPE, stderr=subprocess.STDOUT, text=True)
    except FileNotFoundError as e:
      raise RuntimeUnavailableError(f"Docker is not available: '{self.binary}' not found\n\n{DOCKER_HELP}") from e
    return LogStream(proc)


class LogStream(io.TextIOBase):
  """Lines of a running `docker logs`; a non-zero exit raises once the output ends"""

  step = "get container logs"

  def __init__(self, proc: subprocess.Popen):
    self.proc = proc
    self._last = ""

  def readable(self) -> bool:
    return True

  def readline(self, size: int = -1) -> str:
    line = self.proc.stdout.readline(size)
    if line:
      self._last = line
      return line
    returncode = self.proc.wait()
    if returncode != 0:
      raise RuntimeClientError(self.step, self._last.strip() or f"exit code {returncode}")
    return ""

  def close(self):
    if not self.closed:
      if self.proc.poll() is None:
        self.proc.terminate()
      self.proc.wait()
      self.proc.stdout.close()
    super().close()
