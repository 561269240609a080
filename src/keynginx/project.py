import dataclasses
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Optional

import yaml

from keynginx.certs import CertificateRequest
from keynginx.config import config
from keynginx.errors import ConfigNotFoundError, StorageError, ValidationError
from keynginx.models import ContainerConfig, container_name_for

SECURITY_LEVELS = ('strict', 'balanced', 'permissive')

STRICT_CSP = "default-src 'self'; script-src 'self'; style-src 'self'; img-src 'self';"
BALANCED_CSP = (
  "default-src 'self'; script-src 'self' 'unsafe-inline'; "
  "style-src 'self' 'unsafe-inline'; img-src 'self' data: https:;"
)


class Section:
  """YAML mapping <-> frozen dataclass, unknown keys dropped, missing keys defaulted"""

  @classmethod
  def from_dict(cls, data: Optional[dict]):
    data = data or {}
    known = {f.name: f for f in fields(cls)}
    values = {}
    for key, value in data.items():
      if key not in known or value is None:
        continue
      nested = known[key].metadata.get('section')
      if nested:
        value = nested.from_dict(value)
      elif known[key].metadata.get('items'):
        value = tuple(known[key].metadata['items'].from_dict(v) for v in value)
      values[key] = value
    return cls(**values)

  def to_dict(self) -> dict:
    result = {}
    for f in fields(self):
      value = getattr(self, f.name)
      if isinstance(value, Section):
        value = value.to_dict()
      elif isinstance(value, tuple):
        value = [v.to_dict() for v in value]
      elif isinstance(value, dict):
        value = dict(value)
      result[f.name] = value
    return result


@dataclass(frozen=True)
class ProjectSection(Section):
  name: str = "keynginx-project"
  domain: str = "localhost"
  output_dir: str = "./keynginx-output"


@dataclass(frozen=True)
class SSLSection(Section):
  key_size: int = 2048
  validity_days: int = 365
  country: str = "US"
  state: str = "CA"
  city: str = "San Francisco"
  organization: str = "KeyNginx Generated"
  unit: str = "IT Department"
  email: str = ""


@dataclass(frozen=True)
class ServiceConfig(Section):
  name: str
  port: int
  path: str = "/"
  proxy_pass: str = ""


@dataclass(frozen=True)
class NginxSection(Section):
  https_port: int = 8443
  http_port: int = 8080
  server_name: str = "localhost"
  services: tuple[ServiceConfig, ...] = field(default=(), metadata={'items': ServiceConfig})
  custom_headers: dict[str, str] = field(
    default_factory=lambda: {"X-Server-Created-By": "keynginx"}
  )


@dataclass(frozen=True)
class RateLimitSection(Section):
  enabled: bool = False
  requests_per_minute: int = 100
  burst_size: int = 20


@dataclass(frozen=True)
class SecuritySection(Section):
  enabled: bool = True
  level: str = "balanced"
  enable_hsts: bool = True
  hsts_max_age: int = 31536000
  enable_csp: bool = True
  csp_policy: str = BALANCED_CSP
  custom_headers: dict[str, str] = field(default_factory=dict)
  rate_limit: RateLimitSection = field(default_factory=RateLimitSection, metadata={'section': RateLimitSection})


@dataclass(frozen=True)
class DockerSection(Section):
  compose_version: str = "3.8"
  network_name: str = "keynginx-network"
  nginx_image: str = "nginx:alpine"


##
# Project configuration record
##
@dataclass(frozen=True)
class ProjectConfig(Section):
  """Everything one keynginx project is generated and run from"""
  project: ProjectSection = field(default_factory=ProjectSection, metadata={'section': ProjectSection})
  ssl: SSLSection = field(default_factory=SSLSection, metadata={'section': SSLSection})
  nginx: NginxSection = field(default_factory=NginxSection, metadata={'section': NginxSection})
  security: SecuritySection = field(default_factory=SecuritySection, metadata={'section': SecuritySection})
  docker: DockerSection = field(default_factory=DockerSection, metadata={'section': DockerSection})

  @classmethod
  def default(cls) -> 'ProjectConfig':
    return cls()

  @property
  def domain(self) -> str:
    return self.project.domain

  @property
  def container_name(self) -> str:
    return container_name_for(self.project.domain)

  def validate(self):
    if not self.project.domain:
      raise ValidationError("domain is required")
    self.certificate_request().validate()
    for label, port in (("HTTPS", self.nginx.https_port), ("HTTP", self.nginx.http_port)):
      if not isinstance(port, int) or isinstance(port, bool) or not 0 < port <= 65535:
        raise ValidationError(f"invalid {label} port: {port}")
    if self.security.level not in SECURITY_LEVELS:
      raise ValidationError(
        f"invalid security level: {self.security.level} (must be {', '.join(SECURITY_LEVELS)})"
      )

  def with_domain(self, domain: str) -> 'ProjectConfig':
    return dataclasses.replace(
      self,
      project=dataclasses.replace(self.project, domain=domain),
      nginx=dataclasses.replace(self.nginx, server_name=domain),
    )

  def with_output_dir(self, output_dir: str) -> 'ProjectConfig':
    return dataclasses.replace(self, project=dataclasses.replace(self.project, output_dir=output_dir))

  def with_ports(self, https_port: int, http_port: int) -> 'ProjectConfig':
    return dataclasses.replace(
      self, nginx=dataclasses.replace(self.nginx, https_port=https_port, http_port=http_port)
    )

  def with_security_level(self, level: str) -> 'ProjectConfig':
    match level:
      case "strict":
        security = dataclasses.replace(
          self.security, level=level, enable_hsts=True, hsts_max_age=63072000,
          enable_csp=True, csp_policy=STRICT_CSP,
        )
      case "balanced":
        security = dataclasses.replace(
          self.security, level=level, enable_hsts=True, hsts_max_age=31536000,
          enable_csp=True, csp_policy=BALANCED_CSP,
        )
      case "permissive":
        security = dataclasses.replace(self.security, level=level, enable_hsts=False, enable_csp=False)
      case _:
        raise ValidationError(
          f"invalid security level: {level} (must be {', '.join(SECURITY_LEVELS)})"
        )
    return dataclasses.replace(self, security=security)

  def with_service(self, name: str, port: int, path: str = "/") -> 'ProjectConfig':
    service = ServiceConfig(name=name, port=port, path=path, proxy_pass=f"http://{name}:{port}")
    nginx = dataclasses.replace(self.nginx, services=(*self.nginx.services, service))
    return dataclasses.replace(self, nginx=nginx)

  def with_header(self, key: str, value: str) -> 'ProjectConfig':
    headers = {**self.nginx.custom_headers, key: value}
    return dataclasses.replace(self, nginx=dataclasses.replace(self.nginx, custom_headers=headers))

  def certificate_request(self) -> CertificateRequest:
    ssl = self.ssl
    return CertificateRequest(
      domain=self.project.domain,
      key_size=ssl.key_size,
      validity_days=ssl.validity_days,
      country=ssl.country,
      state=ssl.state,
      city=ssl.city,
      organization=ssl.organization,
      unit=ssl.unit,
      email=ssl.email,
    )

  def container_config(self, project_dir: Path) -> ContainerConfig:
    return ContainerConfig(
      name=self.container_name,
      domain=self.project.domain,
      https_port=self.nginx.https_port,
      http_port=self.nginx.http_port,
      project_dir=str(Path(project_dir).resolve()),
      image=self.docker.nginx_image,
      network_name=self.docker.network_name,
    )

  def save(self, path: Path):
    path = Path(path)
    try:
      path.parent.mkdir(parents=True, exist_ok=True)
      path.write_text(yaml.safe_dump(self.to_dict(), sort_keys=False, default_flow_style=False))
    except OSError as e:
      raise StorageError(f"failed to save configuration ({e.strerror})", path) from e

  @classmethod
  def load(cls, path: Path) -> 'ProjectConfig':
    path = Path(path)
    try:
      data = yaml.safe_load(path.read_text())
    except OSError as e:
      raise StorageError(f"failed to read config file ({e.strerror})", path) from e
    except yaml.YAMLError as e:
      raise ValidationError(f"failed to parse config file {path}: {e}") from e
    if data is not None and not isinstance(data, dict):
      raise ValidationError(f"failed to parse config file {path}: expected a mapping")
    return cls.from_dict(data)


##
# Project lookup
##
def find_config(project_dir: Path) -> Path:
  """Config file for a project directory, falling back to the working directory"""
  candidates = [Path(project_dir) / name for name in config.config_files]
  candidates += [Path.cwd() / name for name in config.config_files]
  for candidate in candidates:
    if candidate.is_file():
      return candidate
  raise ConfigNotFoundError(
    f"KeyNginx configuration file not found in {project_dir}\n\n"
    f"Run '{config.bin_name} init' to create a new project"
  )


def load_project(project_dir: Path) -> tuple[ProjectConfig, Path]:
  """Load and validate the project, return it with the directory its files live in"""
  path = find_config(project_dir)
  project = ProjectConfig.load(path)
  try:
    project.validate()
  except ValidationError as e:
    raise ValidationError(f"invalid config file {path}: {e}") from e
  return project, path.parent


def parse_service(value: str) -> tuple[str, int, str]:
  """'name:port:path' from the command line"""
  parts = value.split(':')
  if len(parts) != 3 or not parts[0]:
    raise ValidationError(f"invalid service '{value}' (expected name:port:path)")
  try:
    port = int(parts[1])
  except ValueError:
    raise ValidationError(f"invalid port in service '{value}'") from None
  return parts[0], port, parts[2] or "/"


def parse_header(value: str) -> tuple[str, str]:
  key, sep, header = value.partition(':')
  if not sep or not key.strip():
    raise ValidationError(f"invalid header '{value}' (expected Key:Value)")
  return key.strip(), header.strip()
