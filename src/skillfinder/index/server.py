"""On-demand management of local vector database server processes.

Each skill directory gets at most one ``chroma run`` process, identified by a
short key derived from the directory path. The registry is an ordinary object
owned by whoever creates it (the CLI command, the web app, a test), so
separate sessions never share mutable state.
"""

from __future__ import annotations

import hashlib
import json
import logging
import shutil
import subprocess
import sys
import threading
import time
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from skillfinder.errors import ServerStartError, ServerStartTimeout
from skillfinder.utils.ports import find_available_port, wait_for_port

LOGGER = logging.getLogger(__name__)

TEMP_DIR_PREFIX = "chroma_temp_"

SpawnFn = Callable[..., subprocess.Popen]


@dataclass(slots=True)
class ServerConfig:
    skill_dir: Path
    host: str = "localhost"
    port: int | None = None
    base_port: int = 8000
    max_port: int = 9000
    startup_timeout: float = 15.0
    grace_period: float = 5.0
    data_dir_name: str | None = None
    persistent: bool = False
    command: Sequence[str] | None = None
    instance_tag: str | None = None

    def fingerprint(self) -> str:
        payload = asdict(self)
        payload["skill_dir"] = str(self.skill_dir)
        payload["command"] = list(self.command) if self.command else None
        return hashlib.md5(json.dumps(payload, sort_keys=True).encode("utf-8")).hexdigest()


@dataclass(slots=True, eq=False)
class ServerInstance:
    key: str
    port: int
    data_dir: Path
    process: subprocess.Popen
    config_hash: str
    config: ServerConfig
    started_at: float = field(default_factory=time.time)
    stopping: bool = False

    @property
    def host(self) -> str:
        return self.config.host

    @property
    def url(self) -> str:
        return f"http://{self.host}:{self.port}"

    def is_alive(self) -> bool:
        return self.process.poll() is None


def server_key(skill_dir: Path | str, instance_tag: str | None = None) -> str:
    """Stable 12 character key for a skill directory (plus optional tag)."""
    digest = hashlib.md5()
    digest.update(str(Path(skill_dir).resolve()).encode("utf-8"))
    digest.update((instance_tag or "default").encode("utf-8"))
    return digest.hexdigest()[:12]


def default_server_command() -> List[str]:
    """The ``chroma`` console script installed alongside the running interpreter."""
    candidate = Path(sys.executable).with_name("chroma")
    if candidate.exists():
        return [str(candidate)]
    return [shutil.which("chroma") or "chroma"]


def _terminate(process: subprocess.Popen, grace_period: float) -> None:
    if process.poll() is not None:
        return
    process.terminate()
    try:
        process.wait(timeout=grace_period)
    except subprocess.TimeoutExpired:
        LOGGER.warning("Server process %s ignored SIGTERM, killing it", process.pid)
        process.kill()
        process.wait()


def _remove_data_dir(data_dir: Path) -> None:
    if not data_dir.exists():
        return
    try:
        shutil.rmtree(data_dir)
        LOGGER.debug("Removed server data directory %s", data_dir)
    except OSError as exc:
        LOGGER.warning("Failed to remove server data directory %s: %s", data_dir, exc)


class ServerRegistry:
    """Tracks running server processes, at most one per key."""

    def __init__(self, *, spawn: SpawnFn = subprocess.Popen, watch_processes: bool = True) -> None:
        self._spawn = spawn
        self._watch_processes = watch_processes
        self._servers: Dict[str, ServerInstance] = {}
        self._key_locks: Dict[str, threading.Lock] = {}
        self._guard = threading.Lock()

    def __enter__(self) -> "ServerRegistry":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.stop_all()

    def _lock_for(self, key: str) -> threading.Lock:
        with self._guard:
            return self._key_locks.setdefault(key, threading.Lock())

    def ensure_server(self, key: str, config: ServerConfig) -> Tuple[ServerInstance, bool]:
        """Return the live instance for ``key``, spawning one if needed.

        The boolean is True only when this call started the process; callers
        that merely found a running server must not stop it.
        """
        with self._lock_for(key):
            existing = self.get_info(key)
            if existing is not None:
                if existing.is_alive():
                    LOGGER.info("Reusing running server %s on port %d", key, existing.port)
                    return existing, False
                LOGGER.info("Discarding dead server entry %s", key)
                self._forget(existing)
                if not existing.config.persistent:
                    _remove_data_dir(existing.data_dir)

            instance = self._launch(key, config)
            with self._guard:
                self._servers[key] = instance
            if self._watch_processes:
                threading.Thread(
                    target=self._watch, args=(instance,), name=f"server-watch-{key}", daemon=True
                ).start()
            return instance, True

    def start_server(self, key: str, config: ServerConfig) -> ServerInstance:
        instance, _ = self.ensure_server(key, config)
        return instance

    def _prepare_data_dir(self, key: str, config: ServerConfig) -> Path:
        name = config.data_dir_name or f"{TEMP_DIR_PREFIX}{key}_{int(time.time() * 1000)}"
        data_dir = Path(config.skill_dir) / name
        if data_dir.exists() and not config.persistent:
            shutil.rmtree(data_dir)
        data_dir.mkdir(parents=True, exist_ok=True)
        return data_dir

    def _launch(self, key: str, config: ServerConfig) -> ServerInstance:
        try:
            port = config.port or find_available_port(config.base_port, config.max_port, config.host)
            data_dir = self._prepare_data_dir(key, config)
        except OSError as exc:
            raise ServerStartError(f"Cannot prepare server {key}: {exc}") from exc

        command = [
            *(config.command or default_server_command()),
            "run",
            "--path",
            str(data_dir),
            "--host",
            config.host,
            "--port",
            str(port),
        ]
        LOGGER.info("Starting vector database server: %s", " ".join(command))

        try:
            process = self._spawn(
                command,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                cwd=str(config.skill_dir),
            )
        except OSError as exc:
            if not config.persistent:
                _remove_data_dir(data_dir)
            raise ServerStartError(f"Failed to spawn server {key}: {exc}") from exc

        if not wait_for_port(config.host, port, config.startup_timeout, process=process):
            exit_code = process.poll()
            _terminate(process, config.grace_period)
            if not config.persistent:
                _remove_data_dir(data_dir)
            if exit_code is not None:
                raise ServerStartError(f"Server {key} exited during startup (code {exit_code})")
            raise ServerStartTimeout(
                f"Server {key} did not accept connections on port {port} "
                f"within {config.startup_timeout:.1f}s"
            )

        LOGGER.info("Server %s ready on %s:%d (data: %s)", key, config.host, port, data_dir)
        return ServerInstance(
            key=key,
            port=port,
            data_dir=data_dir,
            process=process,
            config_hash=config.fingerprint(),
            config=config,
        )

    def _watch(self, instance: ServerInstance) -> None:
        code = instance.process.wait()
        if instance.stopping:
            return
        if self._forget(instance):
            LOGGER.warning("Server %s exited unexpectedly (code %s)", instance.key, code)
            if not instance.config.persistent:
                _remove_data_dir(instance.data_dir)

    def _forget(self, instance: ServerInstance) -> bool:
        with self._guard:
            if self._servers.get(instance.key) is instance:
                del self._servers[instance.key]
                return True
        return False

    def stop_server(self, key: str) -> None:
        """Terminate the server for ``key`` and delete its data directory.

        Stopping an unknown key is a no-op.
        """
        with self._lock_for(key):
            instance = self.get_info(key)
            if instance is None:
                LOGGER.debug("No server registered for %s", key)
                return

            LOGGER.info("Stopping server %s on port %d", key, instance.port)
            instance.stopping = True
            _terminate(instance.process, instance.config.grace_period)
            if not instance.config.persistent:
                _remove_data_dir(instance.data_dir)
            self._forget(instance)

    def stop_all(self) -> None:
        keys = self.keys()
        if keys:
            LOGGER.info("Stopping %d server(s)", len(keys))
        for key in keys:
            self.stop_server(key)

    def get_info(self, key: str) -> Optional[ServerInstance]:
        with self._guard:
            return self._servers.get(key)

    def is_running(self, key: str) -> bool:
        instance = self.get_info(key)
        return instance is not None and instance.is_alive()

    def keys(self) -> List[str]:
        with self._guard:
            return list(self._servers)

    def running_count(self) -> int:
        with self._guard:
            instances = list(self._servers.values())
        return sum(1 for instance in instances if instance.is_alive())
