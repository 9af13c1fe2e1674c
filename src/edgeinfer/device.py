"""Device capability profiling, identity and fingerprinting."""

from __future__ import annotations

import hashlib
import importlib.util
import logging
import os
import platform
import re
import secrets
import shutil
import string
import subprocess
import time
from dataclasses import asdict, dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

import httpx
import psutil

from edgeinfer.observability import log_event
from edgeinfer.planner import recommend_context_window, select_precision

LOGGER = logging.getLogger(__name__)

DEFAULT_CPU_CORES = 4
DEFAULT_MEMORY_MB = 4096
DEFAULT_STORAGE_MB = 10000
FINGERPRINT_LENGTH = 32
# Baseline model used to derive the profile-level precision recommendation.
BASELINE_MODEL_ID = "quantum-1.7b"

_ID_ALPHABET = string.ascii_lowercase + string.digits
_VRAM_MB_RE = re.compile(r"(\d+)\s*MB", re.IGNORECASE)
_VRAM_HEURISTICS: tuple[tuple[re.Pattern[str], int], ...] = (
    (re.compile(r"RTX\s*40", re.IGNORECASE), 8192),
    (re.compile(r"RTX\s*30", re.IGNORECASE), 6144),
    (re.compile(r"GTX", re.IGNORECASE), 4096),
    (re.compile(r"Apple M[2-4]", re.IGNORECASE), 8192),
    (re.compile(r"Apple M1", re.IGNORECASE), 4096),
    (re.compile(r"Intel", re.IGNORECASE), 1024),
)


@dataclass(slots=True)
class DeviceProfile:
    """Snapshot of the host's capabilities taken once per profiling call."""

    cpu_cores: int
    memory_mb: int
    estimated_storage_mb: int
    platform: str
    os: str
    architecture: str
    cpu_model: str
    runtime_name: str
    runtime_version: str
    network_type: str
    timezone: str
    parallel_runtime_available: bool
    gpu_compute_available: bool
    recommended_precision: str
    recommended_context_window: int
    fingerprint: str = ""
    gpu_renderer: Optional[str] = None
    gpu_vram_mb: int = 0
    screen_width: Optional[int] = None
    screen_height: Optional[int] = None
    pixel_ratio: Optional[float] = None
    latency_to_api_ms: Optional[int] = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    def summary(self) -> str:
        memory_gb = round(self.memory_mb / 1024 * 10) / 10
        text = f"Detected: {self.cpu_cores} CPU cores, {memory_gb}GB RAM"
        if self.gpu_renderer:
            text += f", GPU: {self.gpu_renderer[:30]}"
        return text


@dataclass(slots=True)
class NvidiaSMIRecord:
    index: int
    name: str
    memory_total_mb: Optional[int] = None


class DeviceIdentityStore:
    """Persist a random device identifier under a per-user directory."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    @staticmethod
    def new_identifier() -> str:
        suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(12))
        return f"device-{int(time.time() * 1000)}-{suffix}"

    def get_or_create(self) -> str:
        try:
            existing = self.path.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            existing = ""
        except OSError as error:
            log_event(LOGGER, "device.identity.read_error", level="warning", path=str(self.path), exc=error)
            existing = ""
        if existing:
            return existing

        identifier = self.new_identifier()
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(identifier, encoding="utf-8")
        except OSError as error:
            # An unwritable home still yields a usable identifier for this process.
            log_event(LOGGER, "device.identity.write_error", level="warning", path=str(self.path), exc=error)
        else:
            log_event(LOGGER, "device.identity.created", path=str(self.path), device_id=identifier)
        return identifier


def _run_command(command: list[str], *, timeout: float = 5.0) -> tuple[int, str, str]:
    try:
        completed = subprocess.run(
            command,
            check=False,
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except (OSError, subprocess.SubprocessError) as error:  # pragma: no cover - depends on runtime
        return 1, "", str(error)
    return completed.returncode, completed.stdout.strip(), completed.stderr.strip()


def _try_parse_int(value: str | None) -> Optional[int]:
    if value is None:
        return None
    value = value.strip()
    if not value:
        return None
    try:
        return int(float(value))
    except ValueError:
        return None


def _parse_nvidia_smi(output: str) -> list[NvidiaSMIRecord]:
    records: list[NvidiaSMIRecord] = []
    for line in output.splitlines():
        if not line:
            continue
        parts = [part.strip() for part in line.split(",")]
        index = _try_parse_int(parts[0])
        if index is None:
            continue
        name = parts[1] if len(parts) > 1 and parts[1] else "GPU"
        total = _try_parse_int(parts[2]) if len(parts) > 2 else None
        records.append(NvidiaSMIRecord(index=index, name=name, memory_total_mb=total))
    return records


def _detect_nvidia_gpu() -> Optional[NvidiaSMIRecord]:
    if shutil.which("nvidia-smi") is None:
        return None
    returncode, stdout, stderr = _run_command(
        [
            "nvidia-smi",
            "--query-gpu=index,name,memory.total",
            "--format=csv,noheader,nounits",
        ]
    )
    if returncode != 0 or not stdout:
        log_event(LOGGER, "device.gpu.nvidia_smi", level="debug", returncode=returncode, stderr=stderr)
        return None
    records = _parse_nvidia_smi(stdout)
    return records[0] if records else None


def estimate_vram_mb(renderer: Optional[str]) -> int:
    """Rough VRAM guess from a GPU renderer string; 0 when unknown."""

    if not renderer:
        return 0
    match = _VRAM_MB_RE.search(renderer)
    if match:
        return int(match.group(1))
    for pattern, vram in _VRAM_HEURISTICS:
        if pattern.search(renderer):
            return vram
    return 0


def _torch_capabilities() -> tuple[bool, bool, Optional[str]]:
    """Return (runtime importable, GPU compute usable, accelerator label)."""

    if importlib.util.find_spec("torch") is None:
        return False, False, None
    try:
        import torch
    except Exception as error:  # pragma: no cover - broken installs
        log_event(LOGGER, "device.torch_check", level="warning", exc=error)
        return False, False, None

    if torch.cuda.is_available():
        return True, True, torch.cuda.get_device_name(0)
    mps = getattr(torch.backends, "mps", None)
    if mps is not None and mps.is_available():
        return True, True, f"Apple {platform.machine()} (MPS)"
    return True, False, None


def _apple_chip_name() -> Optional[str]:
    if platform.system() != "Darwin":
        return None
    returncode, stdout, _ = _run_command(["sysctl", "-n", "machdep.cpu.brand_string"])
    if returncode != 0 or not stdout.startswith("Apple"):
        return None
    return stdout


def _cpu_model() -> str:
    cpuinfo = Path("/proc/cpuinfo")
    if cpuinfo.exists():
        try:
            for line in cpuinfo.read_text(encoding="utf-8", errors="replace").splitlines():
                if line.lower().startswith("model name"):
                    return line.split(":", 1)[1].strip()
        except OSError:  # pragma: no cover - depends on permissions
            pass
    return platform.processor() or "unknown-cpu"


def _network_type() -> str:
    try:
        stats = psutil.net_if_stats()
    except (OSError, RuntimeError) as error:  # pragma: no cover - depends on OS
        log_event(LOGGER, "device.network_probe", level="debug", exc=error)
        return "unknown"
    for name, stat in stats.items():
        if not stat.isup or name.startswith("lo"):
            continue
        lowered = name.lower()
        if lowered.startswith(("wl", "wi-fi", "wifi")):
            return "wifi"
        if lowered.startswith(("eth", "en")):
            return "ethernet"
        if lowered.startswith(("ww", "rmnet", "pdp_ip")):
            return "cellular"
    return "unknown"


def _timezone() -> str:
    tzinfo = datetime.now().astimezone().tzinfo
    name = getattr(tzinfo, "key", None) or (tzinfo.tzname(None) if tzinfo else None)
    return name or "unknown"


def _storage_mb(path: Path) -> int:
    try:
        return int(shutil.disk_usage(path).free / (1024 * 1024))
    except OSError as error:
        log_event(LOGGER, "device.storage_probe", level="debug", exc=error)
        return DEFAULT_STORAGE_MB


def fingerprint_components(
    *,
    cpu_model: str,
    total_memory_bytes: int,
    system: str,
    architecture: str,
    cpu_cores: int,
    gpu_renderer: Optional[str] = None,
    screen: Optional[tuple[int, int]] = None,
) -> list[str]:
    components = [cpu_model, str(total_memory_bytes), system, architecture, str(cpu_cores)]
    if gpu_renderer:
        components.append(gpu_renderer)
    if screen:
        components.extend(str(value) for value in screen)
    return components


def generate_fingerprint(components: list[str]) -> str:
    """Weak hardware identity: identical machines hash to the same value."""

    digest = hashlib.sha256("|".join(components).encode("utf-8")).hexdigest()
    return digest[:FINGERPRINT_LENGTH]


def profile_device(*, storage_path: Path | None = None) -> DeviceProfile:
    """Populate a :class:`DeviceProfile`; failed probes fall back to defaults."""

    try:
        total_memory_bytes = int(psutil.virtual_memory().total)
        memory_mb = round(total_memory_bytes / (1024 * 1024))
    except (OSError, RuntimeError) as error:  # pragma: no cover - depends on OS
        log_event(LOGGER, "device.memory_probe", level="warning", exc=error)
        memory_mb = DEFAULT_MEMORY_MB
        total_memory_bytes = memory_mb * 1024 * 1024

    cpu_cores = psutil.cpu_count(logical=True) or os.cpu_count() or DEFAULT_CPU_CORES
    runtime_available, gpu_compute, accelerator = _torch_capabilities()

    gpu_renderer: Optional[str] = None
    gpu_vram_mb = 0
    nvidia = _detect_nvidia_gpu()
    if nvidia is not None:
        gpu_renderer = nvidia.name
        gpu_vram_mb = nvidia.memory_total_mb or estimate_vram_mb(nvidia.name)
    else:
        gpu_renderer = accelerator or _apple_chip_name()
        gpu_vram_mb = estimate_vram_mb(gpu_renderer)

    system = platform.system().lower() or "unknown"
    architecture = platform.machine() or "unknown"
    cpu_model = _cpu_model()
    precision = select_precision(memory_mb, BASELINE_MODEL_ID)

    fingerprint = generate_fingerprint(
        fingerprint_components(
            cpu_model=cpu_model,
            total_memory_bytes=total_memory_bytes,
            system=system,
            architecture=architecture,
            cpu_cores=cpu_cores,
            gpu_renderer=gpu_renderer,
        )
    )

    return DeviceProfile(
        cpu_cores=cpu_cores,
        memory_mb=memory_mb,
        estimated_storage_mb=_storage_mb(storage_path or Path.cwd()),
        platform="python",
        os=f"{platform.system()} {platform.release()}".strip() or "unknown",
        architecture=architecture,
        cpu_model=cpu_model,
        runtime_name="python",
        runtime_version=platform.python_version(),
        network_type=_network_type(),
        timezone=_timezone(),
        parallel_runtime_available=runtime_available,
        gpu_compute_available=gpu_compute,
        recommended_precision=precision,
        recommended_context_window=recommend_context_window(memory_mb, precision),
        fingerprint=fingerprint,
        gpu_renderer=gpu_renderer,
        gpu_vram_mb=gpu_vram_mb,
    )


async def measure_api_latency(
    http: httpx.AsyncClient,
    api_url: str,
    *,
    timeout: float = 5.0,
) -> int:
    """Round-trip time to ``/api/health`` in ms, or -1 when unreachable."""

    url = f"{api_url.rstrip('/')}/api/health"
    for method in ("HEAD", "GET"):
        started = time.perf_counter()
        try:
            response = await http.request(method, url, timeout=timeout)
            response.raise_for_status()
        except httpx.HTTPError as error:
            log_event(LOGGER, "device.latency_probe", level="debug", method=method, exc=str(error))
            continue
        return int((time.perf_counter() - started) * 1000)
    return -1


__all__ = [
    "DeviceIdentityStore",
    "DeviceProfile",
    "estimate_vram_mb",
    "fingerprint_components",
    "generate_fingerprint",
    "measure_api_latency",
    "profile_device",
]
