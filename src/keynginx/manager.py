import platform
from pathlib import Path
from typing import Optional

from rich import box
from rich.table import Table

from keynginx.certs import CertificateGenerator, CertificateInfo, CertificateRequest
from keynginx.config import config
from keynginx.errors import StorageError, ValidationError
from keynginx.lifecycle import LifecycleController, UpResult
from keynginx.models import ProjectStatus
from keynginx.output import Output
from keynginx.project import ProjectConfig, load_project
from keynginx.runtime import DockerClient, RuntimeClient
from keynginx.templates import render_compose, render_nginx_conf


##
# Command implementations
##
class CliManager:
  """Main keynginx application class"""

  def __init__(self, version: str, verbose: bool, client: Optional[RuntimeClient] = None):
    self.version = version
    self.verbose = verbose
    self.output = Output()
    self.generator = CertificateGenerator()
    self._client = client
    self._controller: Optional[LifecycleController] = None

  @property
  def client(self) -> RuntimeClient:
    if self._client is None:
      self._client = DockerClient()
    return self._client

  @property
  def controller(self) -> LifecycleController:
    if self._controller is None:
      self._controller = LifecycleController(self.client)
    return self._controller

  def check_runtime(self):
    with self.output.status("Checking Docker availability..."):
      self.client.ping()
    self.output.debug("Docker daemon is reachable")

  # --------------------------------------
  # Certificates
  # --------------------------------------
  def certs(self, request: CertificateRequest, out_dir: Path, overwrite: bool = False):
    """Generate private.key and certificate.crt into out_dir"""
    request.validate()
    private_key_path = out_dir / Path(config.project_files['private_key']).name
    certificate_path = out_dir / Path(config.project_files['certificate']).name

    if not overwrite and (private_key_path.exists() or certificate_path.exists()):
      raise ValidationError(f"certificates already exist in {out_dir} (use --overwrite to replace)")

    self.output.info(f"Generating SSL certificates for domain: [cyan]{request.domain}[/cyan]")
    self.output.verbose_panel(
      f"Domain: {request.domain}\n"
      f"Key size: {request.key_size} bits\n"
      f"Validity: {request.validity_days} days\n"
      f"Subject: C={request.country} ST={request.state} L={request.city} "
      f"O={request.organization} OU={request.unit}"
      + (f"\nEmail: {request.email}" if request.email else ""),
      title="[bold green]Certificate Request[/bold green]",
    )

    with self.output.status("Generating RSA key and certificate..."):
      key_pair = self.generator.generate_key_pair(request)
    self.generator.save_key_pair(key_pair, private_key_path, certificate_path)

    self.output.success("SSL certificates generated successfully")
    self.output.info(f"Private key: [default]{private_key_path}")
    self.output.info(f"Certificate: [default]{certificate_path}")

    if self.verbose:
      self.show_certificate(self.generator.validate_certificate(certificate_path))

    self.output.console.print(
      f"\n[bold cyan]Next steps:[/bold cyan]\n"
      f"  ssl_certificate {certificate_path};\n"
      f"  ssl_certificate_key {private_key_path};"
    )

  def show_certificate(self, info: CertificateInfo):
    names = ", ".join(info.dns_names + info.ip_addresses + info.email_addresses)
    expiry = "[red]expired[/red]" if info.is_expired else f"{info.days_until_expiry} days remaining"
    self.output.panel(
      f"[cyan]Subject:[/cyan] {info.subject}\n"
      f"[cyan]Issuer:[/cyan] {info.issuer}\n"
      f"[cyan]Valid from:[/cyan] {info.not_before:%Y-%m-%d %H:%M:%S}\n"
      f"[cyan]Valid until:[/cyan] {info.not_after:%Y-%m-%d %H:%M:%S} ({expiry})\n"
      f"[cyan]Names:[/cyan] {names}",
      title="[bold green]Certificate Information[/bold green]",
    )

  # --------------------------------------
  # Project initialization
  # --------------------------------------
  def init(self, project: ProjectConfig, overwrite: bool = False):
    """Write certificates, nginx.conf, docker-compose.yml and keynginx.yaml"""
    project.validate()
    out_dir = Path(project.project.output_dir)
    if out_dir.is_dir() and not overwrite:
      raise ValidationError(f"output directory {out_dir} already exists (use --overwrite)")

    self.output.header("KeyNginx Project Initialization")
    self.output.info(f"Creating project in {out_dir}")

    with self.output.status(f"Generating SSL certificates for {project.domain}..."):
      key_pair = self.generator.generate_key_pair(project.certificate_request())
    self.generator.save_key_pair(
      key_pair,
      out_dir / config.project_files['private_key'],
      out_dir / config.project_files['certificate'],
    )
    self.output.success("SSL certificates")

    self._write(out_dir / config.project_files['nginx_conf'], render_nginx_conf(project))
    self.output.success("Nginx configuration")
    self._write(out_dir / config.project_files['compose_file'], render_compose(project))
    self.output.success("Docker Compose configuration")
    project.save(out_dir / config.config_files[0])
    self.output.success("Project configuration")

    services = "".join(
      f"\n  • {s.name}: {s.path} -> {s.name}:{s.port}" for s in project.nginx.services
    )
    hosts_hint = ""
    if project.domain != "localhost":
      hosts_hint = f"\n\n[bold]Add to /etc/hosts:[/bold]\n  127.0.0.1 {project.domain}"
    self.output.panel(
      f"[cyan]Project:[/cyan] {out_dir}\n"
      f"[cyan]Domain:[/cyan] {project.domain}\n"
      f"[cyan]HTTPS:[/cyan] :{project.nginx.https_port}\n"
      f"[cyan]Security:[/cyan] {project.security.level}"
      + (f"\n[cyan]Services:[/cyan]{services}" if services else "")
      + f"\n\n[bold]Next steps:[/bold]\n"
      f"  1. cd {out_dir}\n"
      f"  2. {config.bin_name} up\n"
      f"  3. Visit https://localhost:{project.nginx.https_port}"
      + hosts_hint,
      title="[bold green]KeyNginx Project Created[/bold green]",
      border_style="green",
    )

  def _write(self, path: Path, content: str):
    try:
      path.parent.mkdir(parents=True, exist_ok=True)
      path.write_text(content)
    except OSError as e:
      raise StorageError(f"failed to write file ({e.strerror})", path) from e
    self.output.debug(f"Wrote {path}")

  # --------------------------------------
  # Container lifecycle
  # --------------------------------------
  def up(self, project_path: Path, recreate: bool = False):
    project, project_dir = load_project(project_path)
    self.output.header("Starting KeyNginx Server")
    self.check_runtime()

    with self.output.status("Reconciling container..."):
      result = self.controller.up(project, project_dir, recreate=recreate)

    self._report_up(result)
    self.show_server_info(result.status)

  def _report_up(self, result: UpResult):
    match result.action:
      case "already-running":
        self.output.warning("Container is already running")
      case "restarted":
        self.output.success("Started existing container")
      case "recreated" | "created":
        self.output.success(f"KeyNginx server {result.action} (ID: {result.container_id[:12]})")
    for warning in result.warnings:
      self.output.warning(f"Container started but {warning}")

  def down(self, project_path: Path, remove: bool = True, force: bool = False):
    project, _ = load_project(project_path)
    self.output.header("Stopping KeyNginx Server")
    self.check_runtime()

    with self.output.status("Stopping container..."):
      result = self.controller.down(project, remove=remove, force=force)

    for warning in result.warnings:
      self.output.warning(warning)
    if result.action == "removed":
      self.output.success(f"Container {result.status.container_name} stopped and removed")
    elif result.action == "stopped":
      self.output.success(f"Container {result.status.container_name} stopped")
      self.output.info(f"Start again with: {config.bin_name} up")

  def status(self, project_path: Path, as_json: bool = False):
    project, _ = load_project(project_path)
    self.check_runtime()
    status = self.controller.status(project)
    if as_json:
      self.output.json(status.to_dict())
      return
    self.show_status(status)

  def status_all(self):
    self.check_runtime()
    containers = self.controller.resolver.list_all()
    if not containers:
      self.output.warning("No KeyNginx containers found")
      return

    table = Table(title=f"KeyNginx containers ({len(containers)})", title_justify="left", box=box.ROUNDED)
    table.add_column("ID", no_wrap=True)
    table.add_column("Name", style="cyan", no_wrap=True)
    table.add_column("Status")
    table.add_column("Image")
    table.add_column("Created")
    for c in containers:
      created = f"{c.created:%Y-%m-%d %H:%M:%S}" if c.created else "Unknown"
      table.add_row(c.id[:12], c.name, self.output.state_label(c.state), c.image, created)
    self.output.console.print(table)

  def show_status(self, status: ProjectStatus):
    table = Table(title=f"Project: {status.project_name}", title_justify="left", box=box.ROUNDED, show_header=False)
    table.add_column("Key", style="cyan")
    table.add_column("Value")
    table.add_row("Domain", status.domain)
    table.add_row("Container", status.container_name)
    table.add_row("Status", self.output.state_label(status.status))
    if status.is_found():
      table.add_row("ID", status.short_id())
      table.add_row("Health", status.message)
      table.add_row("Image", status.image)
      table.add_row("Created", f"{status.created:%Y-%m-%d %H:%M:%S}" if status.created else "Unknown")
      ports = [f"{p.public_port}:{p.private_port} ({p.type})" for p in status.ports if p.public_port]
      if ports:
        table.add_row("Ports", "\n".join(ports))
      if status.is_running():
        table.add_row("HTTPS", status.https_url())
        table.add_row("HTTP", f"{status.http_url()} (redirects to HTTPS)")
    self.output.console.print(table)

    if status.is_running():
      actions = [("down", "stop server"), ("logs", "view logs"), ("logs -f", "follow logs")]
    elif status.is_found():
      actions = [("up", "start server"), ("down", "remove container")]
    else:
      actions = [("up", "create and start"), ("init", "regenerate project")]
    self.output.console.print("\n[bold]Available actions:[/bold]")
    for cmd, description in actions:
      self.output.console.print(f"  {config.bin_name} {cmd:<10} [dim]({description})[/dim]")

  def show_server_info(self, status: ProjectStatus):
    ports = "".join(
      f"\n  - {p.public_port}:{p.private_port} ({p.type})" for p in status.ports if p.public_port
    )
    self.output.panel(
      f"[cyan]Domain:[/cyan] {status.domain}\n"
      f"[cyan]HTTPS:[/cyan] {status.https_url()}\n"
      f"[cyan]HTTP:[/cyan] {status.http_url()} (redirects to HTTPS)\n"
      f"[cyan]Status:[/cyan] {self.output.state_label(status.status)}\n"
      f"[cyan]Container:[/cyan] {status.container_name}"
      + (f"\n[cyan]Ports:[/cyan]{ports}" if ports else ""),
      title="[bold green]Server Information[/bold green]",
      border_style="green",
    )

  def logs(self, project_path: Path, follow: bool = False, tail: str = config.log_tail):
    project, _ = load_project(project_path)
    self.check_runtime()
    stream = self.controller.logs(project, follow=follow, tail=tail)
    self.output.info(f"Viewing logs for {project.container_name}")
    if follow:
      self.output.info("Following logs (press Ctrl+C to stop)...")
    with stream:
      for line in stream:
        self.output.console.print(line.rstrip('\n'), markup=False, highlight=False)

  # --------------------------------------
  # System information
  # --------------------------------------
  def sysinfo(self):
    self.check_runtime()
    client = self.client
    docker_version, docker_os = "unknown", "unknown"
    if isinstance(client, DockerClient):
      docker_version = client.version()
      docker_os = client.info().get("OperatingSystem", "unknown")
    containers = client.list_keynginx()
    running = sum(1 for c in containers if c.state == "running")
    self.output.panel(
      f"[cyan]keynginx Version:[/cyan] {self.version}\n"
      f"[cyan]Python:[/cyan] {platform.python_version()}\n"
      f"[cyan]OS/Arch:[/cyan] {platform.system().lower()}/{platform.machine()}\n"
      f"[cyan]Docker Version:[/cyan] {docker_version}\n"
      f"[cyan]Docker Host OS:[/cyan] {docker_os}\n"
      f"[cyan]KeyNginx containers:[/cyan]\n"
      f"  Total: {len(containers)}\n"
      f"  Running: [green]{running}[/green]\n"
      f"  Stopped: [red]{len(containers) - running}[/red]",
      title="System Overview",
      border_style="bold blue",
    )
