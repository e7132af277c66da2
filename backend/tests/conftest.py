"""
Shared fixtures: fake ffmpeg processes and probe data.

No test in this suite needs ffmpeg or ffprobe installed. The driver is
built with a FakePopen that writes the temp output itself and replays
scripted stderr lines.
"""

import itertools
import threading
import time
from pathlib import Path
from typing import Callable, Dict, List, Optional

import pytest

from recodarr.execution.ffmpeg import TranscodeDriver
from recodarr.execution.retry import RetryPolicy
from recodarr.jobs.manager import QueueManager
from recodarr.jobs.models import JobSpec
from recodarr.metadata import MediaProbe, ProbeError, StreamInfo
from recodarr.persistence import JobStore


ENCODED_BYTES = b"encoded-output"


def stats_line(frame: int, seconds: float, fps: float = 30.0) -> str:
    """An ffmpeg stats line for the given position."""
    whole = int(seconds)
    hundredths = int(round((seconds - whole) * 100))
    hh, rem = divmod(whole, 3600)
    mm, ss = divmod(rem, 60)
    return (
        f"frame={frame:5d} fps={fps:4.1f} q=28.0 size=    1024kB "
        f"time={hh:02d}:{mm:02d}:{ss:02d}.{hundredths:02d} bitrate=1000.0kbits/s speed=1.0x"
    )


def wait_until(predicate: Callable[[], bool], timeout: float = 5.0, interval: float = 0.01) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


class FakeProcess:
    """Stands in for a running ffmpeg subprocess.Popen."""

    _pids = itertools.count(4000)

    def __init__(
        self,
        cmd: List[str],
        stderr_lines=(),
        exit_code: int = 0,
        output_bytes: Optional[bytes] = ENCODED_BYTES,
        block: bool = False,
    ):
        self.args = cmd
        self.pid = next(self._pids)
        self.output_path = Path(cmd[-1])
        self.input_path = cmd[cmd.index("-i") + 1]
        self.temp_existed_at_spawn = self.output_path.exists()
        self._lines = list(stderr_lines)
        self._exit_code = exit_code
        self._release = threading.Event()
        if not block:
            self._release.set()
        self.returncode: Optional[int] = None
        self.terminated = False
        self.killed = False

        if output_bytes is not None:
            self.output_path.parent.mkdir(parents=True, exist_ok=True)
            self.output_path.write_bytes(output_bytes)

        self.stderr = self._stream()

    def _stream(self):
        for line in self._lines:
            yield line + "\n"
        self._release.wait(timeout=10)

    def release(self) -> None:
        self._release.set()

    def wait(self, timeout: Optional[float] = None) -> int:
        self._release.wait(timeout=10 if timeout is None else timeout)
        if self.returncode is None:
            self.returncode = -15 if self.terminated else self._exit_code
        return self.returncode

    def poll(self) -> Optional[int]:
        return self.returncode

    def terminate(self) -> None:
        self.terminated = True
        self._release.set()

    def kill(self) -> None:
        self.killed = True
        self._release.set()


class FakePopen:
    """
    Callable replacement for subprocess.Popen.

    Behaviour is scripted per input file name; unscripted inputs encode
    successfully with no stderr output.
    """

    def __init__(self):
        self.behaviours: Dict[str, dict] = {}
        self.default: dict = {}
        self.processes: List[FakeProcess] = []
        self.spawn_error: Optional[BaseException] = None
        self._lock = threading.Lock()

    def script(self, input_name: str, **behaviour) -> None:
        self.behaviours[input_name] = behaviour

    def __call__(self, cmd, **kwargs) -> FakeProcess:
        if self.spawn_error is not None:
            raise self.spawn_error
        input_name = Path(cmd[cmd.index("-i") + 1]).name
        behaviour = self.behaviours.get(input_name, self.default)
        process = FakeProcess(cmd, **behaviour)
        with self._lock:
            self.processes.append(process)
        return process

    @property
    def started_inputs(self) -> List[str]:
        with self._lock:
            return [Path(p.input_path).name for p in self.processes]

    def process_for(self, input_name: str) -> Optional[FakeProcess]:
        with self._lock:
            for process in self.processes:
                if Path(process.input_path).name == input_name:
                    return process
        return None


class FakeProber:
    """Returns fixed probe data; raises for names listed in failures."""

    def __init__(self, duration: Optional[float] = 10.0, fps: Optional[float] = 30.0):
        self.duration = duration
        self.fps = fps
        self.failures = set()
        self.calls: List[str] = []

    def __call__(self, path: str) -> MediaProbe:
        self.calls.append(path)
        if Path(path).name in self.failures:
            raise ProbeError(path, "ffprobe failed with exit code 1")
        return MediaProbe(
            path=path,
            duration=self.duration,
            fps=self.fps,
            streams=[StreamInfo(index=0, codec_type="video", codec_name="h264")],
        )


class CountingStore(JobStore):
    """JobStore that counts save() calls."""

    def __init__(self, path: Path):
        super().__init__(path)
        self.saves = 0

    def save(self, jobs, config):
        self.saves += 1
        return super().save(jobs, config)


@pytest.fixture
def fake_popen() -> FakePopen:
    return FakePopen()


@pytest.fixture
def fake_prober() -> FakeProber:
    return FakeProber()


@pytest.fixture
def fast_retry() -> RetryPolicy:
    return RetryPolicy(attempts=2, delay=0.0, sleep=lambda _: None)


@pytest.fixture
def log_dir(tmp_path) -> Path:
    return tmp_path / "logs"


@pytest.fixture
def media_dir(tmp_path) -> Path:
    path = tmp_path / "media"
    path.mkdir()
    return path


@pytest.fixture
def make_media(media_dir):
    """Create a fake source file and return its path."""

    def _make(name: str, content: bytes = b"original-source-content" * 10) -> Path:
        path = media_dir / name
        path.write_bytes(content)
        return path

    return _make


@pytest.fixture
def driver(log_dir, fake_popen, fake_prober, fast_retry):
    driver = TranscodeDriver(
        log_dir=log_dir,
        retry=fast_retry,
        watchdog_grace=30.0,
        watchdog_interval=30.0,
        popen=fake_popen,
        prober=fake_prober,
    )
    yield driver
    driver.shutdown(wait=True, cancel_running=True)


@pytest.fixture
def store(tmp_path) -> CountingStore:
    return CountingStore(tmp_path / "queue.json")


@pytest.fixture
def manager(store, driver, log_dir):
    """Loaded manager over an empty store, auto_start off."""
    manager = QueueManager(store=store, driver=driver, log_dir=log_dir, progress_save_delay=0.0)
    manager.load()
    manager.update_config(auto_start=False)
    yield manager
    manager.shutdown(cancel_running=True)


@pytest.fixture
def spec_for(media_dir):
    """JobSpec for a source in media_dir, writing to media_dir/out/."""

    def _spec(source: Path, overwrite: bool = False) -> JobSpec:
        return JobSpec(
            input_path=str(source),
            output_path=str(media_dir / "out" / f"{source.stem}.mkv"),
            overwrite_input=overwrite,
        )

    return _spec
