"""Shared pytest fixtures for fc-sdk tests.

Process tests run real subprocesses: small shell/Python stand-ins for the
firecracker and jailer binaries that create the API socket the way the real
ones do. Lifecycle tests mock the control socket with httpx.MockTransport.
"""

from __future__ import annotations

import json
import shutil
import sys
import tempfile
from collections.abc import Callable, Iterator
from pathlib import Path
from typing import Any

import httpx
import pytest

from fc_sdk.client import ControlClient

# ============================================================================
# Fake binaries
# ============================================================================

# Behaves like firecracker (--api-sock) or, when --exec-file is given, like the
# jailer: socket under {chroot}/{exec}/{id}/root/run/firecracker.socket.
_FAKE_VMM = """\
import json
import os
import signal
import socket
import sys

args = sys.argv[1:]


def opt(name):
    return args[args.index(name) + 1] if name in args else None


argv_file = os.environ.get("FAKE_FC_ARGV_FILE")
if argv_file:
    with open(argv_file, "w") as f:
        json.dump({"argv": args, "env": os.environ.get("FAKE_FC_MARKER")}, f)

exec_file = opt("--exec-file")
if exec_file:
    exec_name = os.path.basename(exec_file)
    root = os.path.join(opt("--chroot-base-dir") or "/srv/jailer", exec_name, opt("--id"), "root")
    sock_path = os.path.join(root, "run", "firecracker.socket")
    os.makedirs(os.path.dirname(sock_path), exist_ok=True)
    if "--daemonize" in args:
        if os.fork() > 0:
            os._exit(0)
        os.setsid()
        with open(os.path.join(root, exec_name + ".pid"), "w") as f:
            f.write(str(os.getpid()))
else:
    sock_path = opt("--api-sock")

if "--ignore-sigterm" in args:
    signal.signal(signal.SIGTERM, signal.SIG_IGN)

server = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
server.bind(sock_path)
server.listen(16)
print("API server listening", flush=True)
while True:
    conn, _ = server.accept()
    conn.close()
"""


def write_executable(path: Path, content: str, mode: int = 0o755) -> Path:
    """Write *content* to *path* (creating parents) and chmod it."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content)
    path.chmod(mode)
    return path


@pytest.fixture
def short_tmp() -> Iterator[Path]:
    """Temp dir under /tmp: Unix socket paths must stay below ~108 bytes."""
    path = Path(tempfile.mkdtemp(prefix="fc-", dir="/tmp"))
    yield path
    shutil.rmtree(path, ignore_errors=True)


@pytest.fixture
def fake_bin_dir(short_tmp: Path) -> Path:
    """Directory holding fake ``firecracker`` and ``jailer`` executables."""
    bin_dir = short_tmp / "bin"
    script = write_executable(short_tmp / "fake_vmm.py", _FAKE_VMM, mode=0o644)
    wrapper = f'#!/bin/sh\nexec "{sys.executable}" "{script}" "$@"\n'
    write_executable(bin_dir / "firecracker", wrapper)
    write_executable(bin_dir / "jailer", wrapper)
    return bin_dir


@pytest.fixture
def fake_firecracker(fake_bin_dir: Path) -> Path:
    return fake_bin_dir / "firecracker"


@pytest.fixture
def fake_jailer(fake_bin_dir: Path) -> Path:
    return fake_bin_dir / "jailer"


@pytest.fixture
def crashing_firecracker(short_tmp: Path) -> Path:
    """Exits with code 3 after writing to stderr, before creating any socket."""
    return write_executable(
        short_tmp / "crash" / "firecracker",
        '#!/bin/sh\necho "Error: invalid kernel path" >&2\nexit 3\n',
    )


@pytest.fixture
def silent_firecracker(short_tmp: Path) -> Path:
    """Runs but never creates a socket."""
    return write_executable(short_tmp / "silent" / "firecracker", "#!/bin/sh\nexec sleep 30\n")


def read_argv_file(path: Path) -> dict[str, Any]:
    return json.loads(path.read_text())


# ============================================================================
# Control API mock
# ============================================================================


class FakeControlApi:
    """Records control calls and answers them from a route table.

    Unrouted requests get 204. ``fail`` maps (method, path) to a status code
    answered with a Firecracker-style fault_message body.
    """

    def __init__(self) -> None:
        self.calls: list[tuple[str, str, Any]] = []
        self.responses: dict[tuple[str, str], Any] = {}
        self.fail: dict[tuple[str, str], int] = {}

    def handler(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content) if request.content else None
        key = (request.method, request.url.path)
        self.calls.append((request.method, request.url.path, body))
        if key in self.fail:
            return httpx.Response(self.fail[key], json={"fault_message": f"rejected {request.url.path}"})
        if key in self.responses:
            return httpx.Response(200, json=self.responses[key])
        return httpx.Response(204)

    @property
    def paths(self) -> list[tuple[str, str]]:
        return [(method, path) for method, path, _ in self.calls]

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture
def fake_api() -> FakeControlApi:
    return FakeControlApi()


@pytest.fixture
def make_client(fake_api: FakeControlApi) -> Callable[..., ControlClient]:
    def _make(socket_path: str | Path = "/tmp/fc-test.sock") -> ControlClient:
        return ControlClient(socket_path, transport=fake_api.transport())

    return _make
