import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from keynginx.config import config

NOT_FOUND = "not-found"


def container_name_for(domain: str) -> str:
  """Container name for a project domain, the only place it is derived"""
  return f"{config.container_prefix}-{domain}"


def parse_created(value: str) -> Optional[datetime]:
  """Parse Docker's RFC 3339 timestamps (nanosecond fractions, trailing Z)"""
  if not value:
    return None
  value = re.sub(r"\.(\d{6})\d+", r".\1", value.strip()).replace("Z", "+00:00")
  try:
    return datetime.fromisoformat(value)
  except ValueError:
    return None


@dataclass
class PortMapping:
  private_port: int
  public_port: int = 0
  type: str = "tcp"
  ip: str = ""

  @classmethod
  def from_inspect(cls, ports: Optional[dict]) -> list['PortMapping']:
    """Build mappings from `NetworkSettings.Ports` of `docker inspect`"""
    mappings: list[PortMapping] = []
    for key, bindings in sorted((ports or {}).items()):
      private, _, proto = key.partition('/')
      if not bindings:
        mappings.append(cls(private_port=int(private), type=proto or "tcp"))
        continue
      for binding in bindings:
        mappings.append(cls(
          private_port=int(private),
          public_port=int(binding.get('HostPort') or 0),
          type=proto or "tcp",
          ip=binding.get('HostIp', ''),
        ))
    return mappings

  def to_dict(self) -> dict:
    return {
      'public_port': self.public_port,
      'private_port': self.private_port,
      'type': self.type,
    }


@dataclass
class ContainerSummary:
  id: str
  names: list[str]
  state: str = ""
  image: str = ""
  labels: dict[str, str] = field(default_factory=dict)

  @classmethod
  def from_dict(cls, data: dict) -> 'ContainerSummary':
    """Row of `docker ps --format '{{json .}}'`"""
    labels = {}
    for pair in (data.get('Labels') or '').split(','):
      if '=' in pair:
        key, value = pair.split('=', 1)
        labels[key] = value
    return cls(
      id=data.get('ID', ''),
      names=[n for n in (data.get('Names') or '').split(',') if n],
      state=data.get('State', ''),
      image=data.get('Image', ''),
      labels=labels,
    )


@dataclass
class ContainerDetail:
  id: str
  name: str
  state: str
  status: str
  ports: list[PortMapping] = field(default_factory=list)
  created: Optional[datetime] = None
  image: str = ""

  @classmethod
  def from_inspect(cls, data: dict) -> 'ContainerDetail':
    state = data.get('State') or {}
    health = (state.get('Health') or {}).get('Status') or "unknown"
    return cls(
      id=data.get('Id', ''),
      name=data.get('Name', '').lstrip('/'),
      state=state.get('Status', ''),
      status=f"{state.get('Status', '')} ({health})",
      ports=PortMapping.from_inspect((data.get('NetworkSettings') or {}).get('Ports')),
      created=parse_created(data.get('Created', '')) or datetime.now().astimezone(),
      image=(data.get('Config') or {}).get('Image', ''),
    )


@dataclass(frozen=True)
class ContainerConfig:
  """What the runtime needs to create the proxy container"""
  name: str
  domain: str
  https_port: int
  http_port: int
  project_dir: str
  image: str
  network_name: str


@dataclass
class ProjectStatus:
  project_name: str
  domain: str
  container_name: str
  container_id: str = ""
  status: str = NOT_FOUND
  message: str = "Container not found"
  ports: list[PortMapping] = field(default_factory=list)
  created: Optional[datetime] = None
  image: str = ""

  def is_running(self) -> bool:
    return self.status == "running"

  def is_found(self) -> bool:
    return self.status != NOT_FOUND

  def short_id(self) -> str:
    return self.container_id[:12]

  def https_url(self) -> str:
    return self._url("https", 443)

  def http_url(self) -> str:
    return self._url("http", 80)

  def _url(self, scheme: str, private_port: int) -> str:
    for port in self.ports:
      if port.private_port == private_port and port.public_port != 0:
        return f"{scheme}://localhost:{port.public_port}"
    return f"{scheme}://{self.domain}"

  def to_dict(self) -> dict:
    return {
      'project_name': self.project_name,
      'domain': self.domain,
      'container_name': self.container_name,
      'container_id': self.container_id,
      'status': self.status,
      'message': self.message,
      'ports': [p.to_dict() for p in self.ports],
      'created': self.created.isoformat() if self.created else None,
      'image': self.image,
    }


def is_keynginx_container(container: ContainerSummary) -> bool:
  """Either the name carries our prefix or the ownership label is set"""
  for name in container.names:
    if name.removeprefix('/').startswith(config.container_prefix):
      return True
  return container.labels.get(config.labels['owner_key']) == config.labels['owner_value']
