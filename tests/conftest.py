import io
from datetime import datetime, timezone
from pathlib import Path

import pytest

from keynginx.models import ContainerDetail, ContainerSummary, PortMapping
from keynginx.project import ProjectConfig
from keynginx.runtime import RuntimeClient

MUTATING = ("create", "start", "stop", "restart", "remove")
CREATED_AT = datetime(2025, 1, 2, 3, 4, 5, tzinfo=timezone.utc)


class FakeRuntimeClient(RuntimeClient):
  """In-memory runtime recording every call it receives"""

  def __init__(self, start_state: str = "running"):
    self.containers: dict[str, dict] = {}
    self.calls: list[tuple] = []
    self.start_state = start_state
    self.fail_on: set[str] = set()
    self._next_id = 0

  def add(self, name: str, state: str, labels: dict = None) -> str:
    self._next_id += 1
    container_id = f"{self._next_id:064x}"
    self.containers[container_id] = {"name": name, "state": state, "labels": labels or {}}
    return container_id

  def mutations(self) -> list[tuple]:
    return [c for c in self.calls if c[0] in MUTATING]

  def _record(self, *call):
    self.calls.append(call)
    if call[0] in self.fail_on:
      from keynginx.errors import RuntimeClientError
      raise RuntimeClientError(f"{call[0]} container", "boom")

  def ping(self):
    self._record("ping")

  def list_containers(self, all: bool = True) -> list[ContainerSummary]:
    self._record("list", all)
    return [
      ContainerSummary(id=cid, names=[f"/{c['name']}"], state=c["state"], image="nginx:alpine", labels=c["labels"])
      for cid, c in self.containers.items()
      if all or c["state"] == "running"
    ]

  def inspect(self, container_id: str) -> ContainerDetail:
    self._record("inspect", container_id)
    c = self.containers[container_id]
    return ContainerDetail(
      id=container_id,
      name=c["name"],
      state=c["state"],
      status=f"{c['state']} (unknown)",
      ports=[PortMapping(private_port=443, public_port=8443), PortMapping(private_port=80, public_port=8080)],
      created=CREATED_AT,
      image="nginx:alpine",
    )

  def create(self, container) -> str:
    self._record("create")
    self.last_config = container
    return self.add(container.name, "created")

  def start(self, container_id: str):
    self._record("start")
    self.containers[container_id]["state"] = self.start_state

  def stop(self, container_id: str, timeout=None):
    self._record("stop", timeout)
    self.containers[container_id]["state"] = "exited"

  def restart(self, container_id: str, timeout=None):
    self._record("restart", timeout)
    self.containers[container_id]["state"] = "running"

  def remove(self, container_id: str, force: bool = False):
    self._record("remove", force)
    del self.containers[container_id]

  def logs(self, container_id: str, follow: bool = False, tail: str = "100"):
    self._record("logs", follow, tail)
    return io.StringIO("2025-01-01T00:00:00Z first line\n2025-01-01T00:00:01Z second line\n")


@pytest.fixture
def client() -> FakeRuntimeClient:
  return FakeRuntimeClient()


@pytest.fixture
def project() -> ProjectConfig:
  return ProjectConfig().with_domain("example.com")


@pytest.fixture
def project_dir(tmp_path: Path) -> Path:
  (tmp_path / "ssl").mkdir()
  (tmp_path / "nginx.conf").write_text("events {}\n")
  (tmp_path / "ssl" / "private.key").write_text("key")
  (tmp_path / "ssl" / "certificate.crt").write_text("cert")
  return tmp_path
