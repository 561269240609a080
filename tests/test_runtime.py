import json
import subprocess
from unittest.mock import MagicMock, patch

import pytest

from keynginx.errors import RuntimeClientError, RuntimeUnavailableError
from keynginx.models import ContainerConfig
from keynginx.runtime import DockerClient


def completed(stdout: str = "", returncode: int = 0) -> subprocess.CompletedProcess:
  return subprocess.CompletedProcess(args=[], returncode=returncode, stdout=stdout, stderr="")


def ps_rows(*rows: dict) -> str:
  return "\n".join(json.dumps(r) for r in rows) + "\n"


@pytest.fixture
def run():
  with patch("keynginx.runtime.subprocess.run") as mock:
    yield mock


def commands(run: MagicMock) -> list[list[str]]:
  return [c.args[0] for c in run.call_args_list]


class TestLookup:

  def test_find_by_name_strips_leading_slash(self, run):
    run.return_value = completed(ps_rows(
      {"ID": "111", "Names": "keynginx-other.com"},
      {"ID": "222", "Names": "/keynginx-example.com"},
    ))

    found = DockerClient().find_by_name("keynginx-example.com")

    assert found.id == "222"
    assert commands(run) == [["docker", "ps", "-a", "--no-trunc", "--format", "{{json .}}"]]

  def test_find_by_name_requires_exact_match(self, run):
    run.return_value = completed(ps_rows({"ID": "111", "Names": "keynginx-example.com-old"}))

    assert DockerClient().find_by_name("keynginx-example.com") is None

  def test_empty_list(self, run):
    run.return_value = completed("")
    assert DockerClient().list_containers() == []

  def test_inspect(self, run):
    run.return_value = completed(json.dumps([{
      "Id": "abc", "Name": "/keynginx-a", "State": {"Status": "exited"}, "Config": {"Image": "nginx"},
    }]))

    detail = DockerClient().inspect("abc")

    assert (detail.id, detail.name, detail.state, detail.image) == ("abc", "keynginx-a", "exited", "nginx")


class TestMutations:

  def test_stop_with_timeout(self, run):
    run.return_value = completed()
    DockerClient().stop("abc", 30)
    assert commands(run) == [["docker", "stop", "--time", "30", "abc"]]

  def test_restart_with_timeout(self, run):
    run.return_value = completed()
    DockerClient().restart("abc", 1)
    assert commands(run) == [["docker", "restart", "--time", "1", "abc"]]

  def test_remove(self, run):
    run.return_value = completed()
    client = DockerClient()
    client.remove("abc")
    client.remove("abc", force=True)
    assert commands(run) == [["docker", "rm", "abc"], ["docker", "rm", "--force", "abc"]]

  def test_create(self, run, tmp_path):
    run.side_effect = [completed(""), completed("[]"), completed("new-id\n")]
    container = ContainerConfig(
      name="keynginx-example.com", domain="example.com", https_port=8443, http_port=8080,
      project_dir=str(tmp_path), image="nginx:alpine", network_name="keynginx-network",
    )

    assert DockerClient().create(container) == "new-id"

    create = commands(run)[2]
    assert create[:2] == ["docker", "create"]
    assert create[-1] == "nginx:alpine"
    assert "0.0.0.0:8443:443/tcp" in create
    assert "0.0.0.0:8080:80/tcp" in create
    assert "created-by=keynginx" in create
    assert "keynginx.domain=example.com" in create
    assert f"type=bind,source={tmp_path / 'nginx.conf'},target=/etc/nginx/nginx.conf,readonly" in create
    assert f"type=bind,source={tmp_path / 'ssl'},target=/etc/nginx/ssl,readonly" in create

  def test_create_refuses_existing_name(self, run):
    run.return_value = completed(ps_rows({"ID": "111", "Names": "keynginx-example.com"}))
    container = ContainerConfig("keynginx-example.com", "example.com", 8443, 8080, "/tmp", "nginx", "net")

    with pytest.raises(RuntimeClientError, match="already exists"):
      DockerClient().create(container)

  def test_create_makes_missing_network(self, run, tmp_path):
    missing = subprocess.CalledProcessError(1, ["docker"], stderr="No such network")
    run.side_effect = [completed(""), missing, completed(), completed("id\n")]
    container = ContainerConfig("keynginx-a", "a", 8443, 8080, str(tmp_path), "nginx", "net")

    DockerClient().create(container)

    assert commands(run)[2] == ["docker", "network", "create", "--driver", "bridge", "net"]


class TestErrors:

  def test_failed_call_names_the_step(self, run):
    run.side_effect = subprocess.CalledProcessError(1, ["docker"], stderr="No such container: abc\n")

    with pytest.raises(RuntimeClientError) as err:
      DockerClient().start("abc")

    assert err.value.step == "start container"
    assert str(err.value) == "failed to start container: No such container: abc"

  def test_missing_binary_is_unavailable(self, run):
    run.side_effect = FileNotFoundError("docker")

    with pytest.raises(RuntimeUnavailableError, match="not found"):
      DockerClient().list_containers()

  def test_daemon_down_is_unavailable(self, run):
    run.side_effect = subprocess.CalledProcessError(1, ["docker"], stderr="Cannot connect to the Docker daemon")

    with pytest.raises(RuntimeUnavailableError, match="Cannot connect"):
      DockerClient().ping()


def test_info_and_version(run):
  run.side_effect = [completed('{"OperatingSystem": "Docker Desktop"}'), completed("Client: 27.0.1, Server: 27.0.1\n")]
  client = DockerClient()

  assert client.info()["OperatingSystem"] == "Docker Desktop"
  assert client.version() == "Client: 27.0.1, Server: 27.0.1"


def fake_docker(tmp_path, body: str) -> str:
  script = tmp_path / "docker"
  script.write_text(f"#!/bin/sh\n{body}\n")
  script.chmod(0o755)
  return str(script)


class TestLogs:

  def test_command_line(self):
    with patch("keynginx.runtime.subprocess.Popen") as popen:
      popen.return_value.stdout.readline.return_value = ""
      popen.return_value.wait.return_value = 0

      with DockerClient().logs("abc", follow=True, tail="20") as stream:
        assert list(stream) == []

    assert popen.call_args.args[0] == ["docker", "logs", "--timestamps", "--tail", "20", "--follow", "abc"]

  def test_streams_lines(self, tmp_path):
    binary = fake_docker(tmp_path, 'echo "2025-01-01T00:00:00Z one"\necho "2025-01-01T00:00:01Z two" >&2')

    with DockerClient(binary).logs("abc") as stream:
      lines = list(stream)

    assert lines == ["2025-01-01T00:00:00Z one\n", "2025-01-01T00:00:01Z two\n"]
    assert stream.proc.returncode == 0

  def test_failed_command_raises(self, tmp_path):
    binary = fake_docker(tmp_path, 'echo "Error response from daemon: No such container: abc" >&2\nexit 1')

    with pytest.raises(RuntimeClientError) as err:
      with DockerClient(binary).logs("abc") as stream:
        list(stream)

    assert err.value.step == "get container logs"
    assert err.value.detail == "Error response from daemon: No such container: abc"
    assert stream.proc.returncode == 1

  def test_close_stops_the_process(self, tmp_path):
    binary = fake_docker(tmp_path, 'echo ready\nexec sleep 30')

    stream = DockerClient(binary).logs("abc", follow=True)
    assert stream.readline() == "ready\n"
    stream.close()

    assert stream.proc.returncode is not None
    assert stream.closed
