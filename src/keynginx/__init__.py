#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Script Name: keynginx
Name: KeyNginx CLI tool
Description: Self-signed TLS and an Nginx reverse proxy container for local development domains.

Copyright (c) 2025 Alex Sytnyk <opensource@banesbyte.com>

Permission is hereby granted, free of charge, to any person obtaining a copy
of this software and associated documentation files (the "Software"), to deal
in the Software without restriction, including without limitation the rights
to use, copy, modify, merge, publish, distribute, sublicense, and/or sell
copies of the Software, and to permit persons to whom the Software is
furnished to do so, subject to the following conditions:

The above copyright notice and this permission notice shall be included in all
copies or substantial portions of the Software.

THE SOFTWARE IS PROVIDED "AS IS", WITHOUT WARRANTY OF ANY KIND, EXPRESS OR
IMPLIED, INCLUDING BUT NOT LIMITED TO THE WARRANTIES OF MERCHANTABILITY,
FITNESS FOR A PARTICULAR PURPOSE AND NONINFRINGEMENT. IN NO EVENT SHALL THE
AUTHORS OR COPYRIGHT HOLDERS BE LIABLE FOR ANY CLAIM, DAMAGES OR OTHER
LIABILITY, WHETHER IN AN ACTION OF CONTRACT, TORT OR OTHERWISE, ARISING FROM,
OUT OF OR IN CONNECTION WITH THE SOFTWARE OR THE USE OR OTHER DEALINGS IN THE
SOFTWARE.
"""

##
# Metadata
##

__version__ = "1.0.0"
__status__ = "Development" # Options: "Development", "Production", "Prototype"

__license__ = "MIT"
__copyright__ = "Copyright, 2025 Alex Sytnyk <opensource@banesbyte.com>"
__maintainer__ = "Alex Sytnyk"
__author__ = "Alex Sytnyk, Artem Taranyuk"
__email__ = "opensource@banesbyte.com"

##
# Imports
##
import sys
from pathlib import Path
import click

from keynginx.certs import CertificateRequest
from keynginx.config import config
from keynginx.errors import KeynginxError
from keynginx.output import Output
from keynginx.manager import CliManager
from keynginx.project import ProjectConfig, SECURITY_LEVELS, parse_header, parse_service

##
# Click-based CLI
##
class Obj:
  """Container for shared CLI state and services."""
  def __init__(self, verbose: bool, no_color: bool) -> None:
    self.verbose = verbose
    self.no_color = no_color
    # Initialize global output configuration and the keynginx manager
    Output(verbose, no_color)
    self.keynginx = CliManager(__version__, verbose)


class KeynginxGroup(click.Group):
  """Report keynginx errors as one red line instead of a traceback"""

  def invoke(self, ctx: click.Context):
    try:
      return super().invoke(ctx)
    except KeynginxError as e:
      Output().error(str(e))
      ctx.exit(1)


project_option = click.option(
  "--project", "-p", "project", default=".", show_default=True,
  type=click.Path(file_okay=False, path_type=Path), help="Project directory path"
)


@click.group(cls=KeynginxGroup, help="KeyNginx - SSL certificates and an Nginx proxy for local domains")
@click.version_option(version=__version__, prog_name=config.bin_name)
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output for debugging")
@click.option("--no-color", is_flag=True, help="Disable colored output")
@click.pass_context
def main(ctx: click.Context, verbose: bool, no_color: bool) -> None:
  """KeyNginx command-line interface"""
  ctx.obj = Obj(verbose, no_color)
  if verbose:
    ctx.obj.keynginx.output.debug("Verbose mode enabled")

# --- Project setup ---
@main.command(help="Initialize a project: certificates, nginx.conf, docker-compose.yml, keynginx.yaml")
@click.option("--domain", "-d", default="localhost", show_default=True, help="Domain name for the project")
@click.option("--output", "-o", "output_dir", default="./keynginx-output", show_default=True, help="Output directory")
@click.option("--interactive", "-i", is_flag=True, help="Prompt for domain, security level and services")
@click.option("--security-level", type=click.Choice(SECURITY_LEVELS), default="balanced", show_default=True)
@click.option("--https-port", type=int, default=8443, show_default=True, help="Host port published for HTTPS")
@click.option("--http-port", type=int, default=8080, show_default=True, help="Host port published for HTTP")
@click.option("--overwrite", is_flag=True, help="Overwrite an existing output directory")
@click.option("--service", "services", multiple=True, metavar="NAME:PORT:PATH", help="Proxied service, e.g. frontend:3000:/")
@click.option("--header", "headers", multiple=True, metavar="KEY:VALUE", help="Custom response header")
@click.pass_obj
def init(obj: Obj, domain: str, output_dir: str, interactive: bool, security_level: str,
         https_port: int, http_port: int, overwrite: bool,
         services: tuple[str, ...], headers: tuple[str, ...]) -> None:
  """Create a complete KeyNginx project directory"""
  project = ProjectConfig().with_domain(domain).with_output_dir(output_dir)

  if interactive:
    domain = click.prompt("Domain name", default=domain)
    security_level = click.prompt("Security level", default=security_level, type=click.Choice(SECURITY_LEVELS))
    project = project.with_domain(domain)
    if click.confirm("Add services?", default=False):
      while True:
        name = click.prompt("Service name (empty to finish)", default="", show_default=False)
        if not name:
          break
        port = click.prompt(f"Port for {name}", type=int)
        path = click.prompt(f"Path for {name}", default="/")
        project = project.with_service(name, port, path)
        obj.keynginx.output.success(f"Added service: {name} -> {name}:{port}{path}")

  project = project.with_security_level(security_level).with_ports(https_port, http_port)
  for value in services:
    project = project.with_service(*parse_service(value))
  for value in headers:
    project = project.with_header(*parse_header(value))

  obj.keynginx.init(project, overwrite=overwrite)


@main.command(help="Generate an SSL private key and self-signed certificate")
@click.option("--domain", "-d", default="localhost", show_default=True, help="Domain name for the certificate")
@click.option("--out", "-o", "out_dir", default="./ssl", show_default=True, type=click.Path(file_okay=False, path_type=Path), help="Output directory")
@click.option("--key-size", type=int, default=2048, show_default=True, help="RSA key size in bits (2048, 3072, 4096)")
@click.option("--validity", type=int, default=365, show_default=True, help="Certificate validity period in days")
@click.option("--overwrite", is_flag=True, help="Overwrite existing certificates")
@click.option("--country", default="US", show_default=True, help="Country code (2 letters)")
@click.option("--state", default="CA", show_default=True, help="State or province")
@click.option("--city", default="San Francisco", show_default=True, help="City or locality")
@click.option("--organization", default="KeyNginx Generated", show_default=True, help="Organization name")
@click.option("--unit", default="IT Department", show_default=True, help="Organizational unit")
@click.option("--email", default="", help="Email address (optional)")
@click.pass_obj
def certs(obj: Obj, domain: str, out_dir: Path, key_size: int, validity: int, overwrite: bool,
          country: str, state: str, city: str, organization: str, unit: str, email: str) -> None:
  """Create a self-signed certificate for a local development domain"""
  request = CertificateRequest(
    domain=domain, key_size=key_size, validity_days=validity,
    country=country, state=state, city=city,
    organization=organization, unit=unit, email=email,
  )
  obj.keynginx.certs(request, out_dir, overwrite=overwrite)

# --- Container lifecycle ---
@main.command(help="Create and start the Nginx container, or start the existing one")
@project_option
@click.option("--recreate", is_flag=True, help="Recreate the container even if it exists")
@click.pass_obj
def up(obj: Obj, project: Path, recreate: bool) -> None:
  """Start the project's server"""
  obj.keynginx.up(project, recreate=recreate)


@main.command(help="Stop the Nginx container and remove it")
@project_option
@click.option("--remove/--no-remove", default=True, show_default=True, help="Remove the container after stopping")
@click.option("--force", is_flag=True, help="Stop quickly (1s grace period)")
@click.pass_obj
def down(obj: Obj, project: Path, remove: bool, force: bool) -> None:
  """Stop the project's server"""
  obj.keynginx.down(project, remove=remove, force=force)

# --- Container information ---
@main.command(help="Show project container status")
@project_option
@click.option("--json", "as_json", is_flag=True, help="Output status as JSON")
@click.option("--all", "show_all", is_flag=True, help="Show all KeyNginx containers")
@click.pass_obj
def status(obj: Obj, project: Path, as_json: bool, show_all: bool) -> None:
  """Display status of the project container"""
  if show_all:
    obj.keynginx.status_all()
  else:
    obj.keynginx.status(project, as_json=as_json)


@main.command(help="View container logs")
@project_option
@click.option("--follow", "-f", is_flag=True, help="Follow log output")
@click.option("--tail", default=config.log_tail, show_default=True, help="Number of lines to show from the end of the logs")
@click.pass_obj
def logs(obj: Obj, project: Path, follow: bool, tail: str) -> None:
  """Print or stream the container logs"""
  obj.keynginx.logs(project, follow=follow, tail=tail)


@main.command(help="Show version, platform and Docker information")
@click.pass_obj
def sysinfo(obj: Obj) -> None:
  """Display system information"""
  obj.keynginx.sysinfo()

# --------------------------------------


def custom_excepthook(exc_type, exc_value, exc_traceback):
  if exc_type == KeyboardInterrupt:
    click.echo("\n\nInterrupted by user", err=True)
    sys.exit(130)
  sys.__excepthook__(exc_type, exc_value, exc_traceback)


sys.excepthook = custom_excepthook

##
# Entry point
##
if __name__ == '__main__':
  try:
    main()
  except KeyboardInterrupt:
    click.echo("\nInterrupted by user", err=True)
    sys.exit(130)
