import stat
import subprocess
import sys
import threading
import time
import pytest
import yaml
from pathlib import Path
from typing import Callable, Dict, List, Optional

from jxlbatch.config.models import AppConfig
from jxlbatch.domain.events import LogEmitted
from jxlbatch.domain.models import ConversionJob
from jxlbatch.infrastructure.event_bus import EventBus

THROUGHPUT_LINE = "1920 x 1080, 12.50 MP/s [12.40, 12.60], 1 reps, 4 threads."


# ============================================================================
# Fake encoder process
# ============================================================================

class FakeProcess:
    """Stands in for subprocess.Popen; argv is [binary, input, output, ...].

    With ``hang=True`` the process never exits on its own: every poll calls
    ``on_poll(self)`` (tests use it to inject ticks or raise the abort flag)
    until terminate() or kill() is called.
    """

    def __init__(self, cmd: List[str], returncode: int = 0, stderr: Optional[List[str]] = None,
                 stdout: Optional[List[str]] = None, output_bytes: Optional[bytes] = b"jxl-data",
                 hang: bool = False, on_poll: Optional[Callable[["FakeProcess"], None]] = None,
                 ignore_terminate: bool = False):
        self.args = cmd
        self.stdout = list(stdout or [])
        self.stderr = list(stderr or [])
        self.returncode = None
        self.polls = 0
        self.terminated = False
        self.killed = False
        self._final_code = returncode
        self._hang = hang
        self._on_poll = on_poll
        self._ignore_terminate = ignore_terminate
        if output_bytes is not None and not hang:
            Path(cmd[2]).write_bytes(output_bytes)

    def _stopped(self) -> bool:
        return self.killed or (self.terminated and not self._ignore_terminate)

    def poll(self):
        if self._stopped():
            self.returncode = -9 if self.killed else -15
            return self.returncode
        if self._hang:
            self.polls += 1
            if self._on_poll is not None:
                self._on_poll(self)
            time.sleep(0.001)
            return None
        self.returncode = self._final_code
        return self.returncode

    def wait(self, timeout=None):
        if self._stopped() or not self._hang:
            return self.poll()
        raise subprocess.TimeoutExpired(self.args, timeout)

    def terminate(self):
        self.terminated = True

    def kill(self):
        self.killed = True


class FakePopen:
    """Popen replacement with per-file behaviour, keyed by input file name."""

    def __init__(self, default: Optional[Dict] = None, per_file: Optional[Dict[str, Dict]] = None):
        self.default = default or {}
        self.per_file = per_file or {}
        self.calls: List[List[str]] = []
        self.processes: List[FakeProcess] = []
        self._lock = threading.Lock()

    def __call__(self, cmd, **kwargs):
        behaviour = dict(self.default)
        behaviour.update(self.per_file.get(Path(cmd[1]).name, {}))
        process = FakeProcess(list(cmd), **behaviour)
        with self._lock:
            self.calls.append(list(cmd))
            self.processes.append(process)
        return process

    @property
    def inputs(self) -> List[str]:
        with self._lock:
            return [Path(cmd[1]).name for cmd in self.calls]


class NullTicker:
    """Ticker that never ticks; tests drive the tick counter by hand."""

    def __init__(self, on_tick, interval_s: float = 0.01):
        self.on_tick = on_tick

    def start(self):
        pass

    def stop(self):
        pass


@pytest.fixture
def fake_popen_factory():
    return FakePopen


@pytest.fixture
def null_ticker():
    return NullTicker


@pytest.fixture
def throughput_line():
    return THROUGHPUT_LINE


# ============================================================================
# Job Fixtures
# ============================================================================

@pytest.fixture
def make_job(tmp_path):
    """Builds a ConversionJob rooted at tmp_path/input -> tmp_path/output."""
    def _make(options: Optional[Dict[str, str]] = None, use_file_list: bool = False,
              base_path: Optional[Path] = None) -> ConversionJob:
        return ConversionJob.create(
            binary=Path("/usr/bin/cjxl"),
            output_dir=tmp_path / "output",
            options=options or {},
            base_path=base_path or (tmp_path / "input"),
            use_file_list=use_file_list,
        )
    return _make


@pytest.fixture
def image_files(tmp_path):
    """Creates ten 1000-byte PNG stand-ins in tmp_path/input."""
    input_dir = tmp_path / "input"
    input_dir.mkdir(exist_ok=True)
    files = []
    for i in range(10):
        f = input_dir / f"img{i}.png"
        f.write_bytes(b"p" * 1000)
        files.append(f)
    return files


# ============================================================================
# Configuration Fixtures
# ============================================================================

@pytest.fixture
def sample_config():
    """Returns a sample AppConfig object for testing."""
    return AppConfig(
        general={
            "threads": 2,
            "recursive": True,
            "extensions": [".png", ".jpg"],
            "debug": False,
        },
        binary="cjxl",
        options={"-d": "1.0", "-e": "7"},
    )


@pytest.fixture
def config_yaml_path(tmp_path):
    """Creates a temporary YAML config file."""
    conf_dir = tmp_path / "conf"
    conf_dir.mkdir()
    conf_file = conf_dir / "jxlbatch.yaml"

    content = {
        'general': {
            'threads': 2,
            'recursive': True,
            'extensions': ['png', 'JPG'],
            'debug': False,
        },
        'binary': 'cjxl',
        'output_dir': str(tmp_path / "out"),
        'options': {
            '-d': 1.0,
            '-e': 7,
            'overwrite': 1,
            'outSuffix': '_%hash%',
        },
    }

    with open(conf_file, 'w') as f:
        yaml.dump(content, f)

    return conf_file


# ============================================================================
# EventBus Fixtures
# ============================================================================

@pytest.fixture
def event_bus():
    """Returns a fresh EventBus instance."""
    return EventBus()


@pytest.fixture
def log_events(event_bus):
    """Collects every LogEmitted published on the event_bus fixture."""
    events: List[LogEmitted] = []
    event_bus.subscribe(LogEmitted, events.append)
    return events


# ============================================================================
# Script encoder (integration tests with a real subprocess)
# ============================================================================

@pytest.fixture
def script_encoder(tmp_path):
    """Writes a POSIX shell script that behaves like a tiny encoder."""
    if sys.platform == "win32":
        pytest.skip("shell script encoder needs a POSIX shell")

    def _write(body: str, name: str = "fake-cjxl") -> Path:
        script = tmp_path / "bin" / name
        script.parent.mkdir(exist_ok=True)
        script.write_text("#!/bin/sh\n" + body)
        script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return script

    return _write


# ============================================================================
# Markers
# ============================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (real subprocesses)"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )
    config.addinivalue_line(
        "markers", "unit: marks tests as unit tests"
    )
