import asyncio
import json
import os
import sys
import tempfile
import unittest
from pathlib import Path
from typing import Any
from urllib.parse import urlencode

from fetchq.core.dependencies import FFMPEG_NAME, YTDLP_NAME
from fetchq.core.engine import DownloadEngine
from fetchq.core.power import PowerSaveBlocker
from fetchq.utils.paths import AppPaths

WAIT_TIMEOUT = 15

# Behaviour is driven by the query string of the URL it is asked to fetch.
FAKE_WORKER_SOURCE = """#!{python}
import json
import os
import sys
import time
from urllib.parse import parse_qs, urlparse

url = sys.argv[-1]
params = {{key: values[-1] for key, values in parse_qs(urlparse(url).query).items()}}

if "argv" in params:
    with open(params["argv"], "w", encoding="utf-8") as f:
        json.dump(sys.argv[1:], f)

template = sys.argv[sys.argv.index("-o") + 1] if "-o" in sys.argv else "out.%(ext)s"
filename = template.replace("%(title)s", "clip").replace("%(ext)s", "mp4")
total = int(params.get("total", "1000"))
steps = int(params.get("steps", "2"))

print("[info] fake worker starting", flush=True)
for step in range(1, steps + 1):
    record = {{
        "status": "downloading",
        "filename": filename,
        "downloaded_bytes": total * step // steps,
        "total_bytes": total,
    }}
    print(json.dumps(record), flush=True)

gate = params.get("gate")
if gate:
    while not os.path.exists(gate):
        time.sleep(0.02)
if "sleep" in params:
    time.sleep(float(params["sleep"]))
if "stderr" in params:
    print(params["stderr"], file=sys.stderr, flush=True)

print(json.dumps({{"status": "finished", "filename": filename, "total_bytes": total}}), flush=True)
sys.exit(int(params.get("code", "0")))
"""


def write_fake_worker(binaries_dir: Path) -> Path:
    binaries_dir.mkdir(parents=True, exist_ok=True)
    path = binaries_dir / YTDLP_NAME
    path.write_text(FAKE_WORKER_SOURCE.format(python=sys.executable), encoding="utf-8")
    path.chmod(0o755)
    return path


def write_fake_transcoder(binaries_dir: Path) -> Path:
    binaries_dir.mkdir(parents=True, exist_ok=True)
    path = binaries_dir / FFMPEG_NAME
    path.write_text("", encoding="utf-8")
    return path


def job_url(**params: Any) -> str:
    query = urlencode({key: str(value) for key, value in params.items()})
    return f"https://media.example.com/watch?{query}"


def write_json(path: Path, data: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data), encoding="utf-8")


class RecordingNotifier:
    def __init__(self) -> None:
        self.messages: list[tuple[str, str]] = []

    async def notify(self, title: str, body: str) -> None:
        self.messages.append((title, body))


class FakePowerBlocker(PowerSaveBlocker):
    def __init__(self) -> None:
        super().__init__()
        self.transitions: list[bool] = []

    async def _engage(self) -> None:
        self.transitions.append(True)

    async def _release(self) -> None:
        self.transitions.append(False)


class RecordingOpener:
    def __init__(self) -> None:
        self.opened: list[Path] = []

    def __call__(self, target: Path) -> bool:
        self.opened.append(target)
        return True


@unittest.skipIf(os.name == "nt", "the fake worker is started through a shebang")
class EngineTestCase(unittest.IsolatedAsyncioTestCase):
    """Runs a real engine against a fake yt-dlp script in a temporary data dir."""

    settings: dict[str, Any] = {}
    start_engine = True

    async def asyncSetUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)
        self.paths = AppPaths(self.root / "data")
        self.downloads = self.root / "downloads"
        write_fake_worker(self.paths.binaries_dir)
        self.write_settings(self.settings)
        self.prepare_state()
        self.engine = self.make_engine()
        if self.start_engine:
            await self.engine.start()

    async def asyncTearDown(self) -> None:
        await self.engine.shutdown()
        self._tmp.cleanup()

    def prepare_state(self) -> None:
        """Hook for writing history/queue files before the engine starts."""

    def write_settings(self, overrides: dict[str, Any]) -> None:
        base = {
            "maxConcurrent": 2,
            "downloadsRootDir": str(self.downloads),
            "useSystemBinaries": False,
            "useDownloadArchive": False,
        }
        write_json(self.paths.settings_file, {**base, **overrides})

    def make_engine(self) -> DownloadEngine:
        self.notifier = RecordingNotifier()
        self.power = FakePowerBlocker()
        self.opener = RecordingOpener()
        return DownloadEngine.from_data_dir(
            self.paths.data_dir,
            notifier=self.notifier,
            power_blocker=self.power,
            opener=self.opener,
        )

    def gate(self, name: str) -> Path:
        return self.root / f"{name}.gate"

    async def wait_for(self, job_id: str):
        return await asyncio.wait_for(self.engine.wait_for(job_id), WAIT_TIMEOUT)

    async def release(self, job_id: str, gate: Path) -> None:
        """Opens a gate and waits until the job's exit handler (including drain) ran."""
        handle = self.engine.state.registry.get(job_id)
        self.assertIsNotNone(handle, f"{job_id} is not running")
        gate.touch()
        await asyncio.wait_for(handle.finished.wait(), WAIT_TIMEOUT)
