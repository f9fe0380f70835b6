"""
Lifecycle management shared by the VPN client and server.

Subclasses describe their startup in _startup(), acquiring resources with
_acquire() and launching tasks with _spawn(). The controller guarantees that
a failed startup unwinds in reverse order, and that stop() joins every task
before any handle is released.
"""
import time
import enum
import logging
import threading
from typing import Any, Callable, Dict, List, Optional, Tuple

from common.errors import SetupError

METRICS_INTERVAL = 30.0


class ServiceState(enum.Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"


class LifecycleController:
    """
    Base class for the VPN services
    """
    mode = "base"

    def __init__(self, name: str, metrics_interval: float = METRICS_INTERVAL):
        """
        Initialize the controller

        Args:
            name: Service name used for logging and thread names
            metrics_interval: Seconds between metrics log lines
        """
        self.name = name
        self.metrics_interval = metrics_interval
        self.logger = logging.getLogger(f"pskvpn.{name}")

        self.stop_event = threading.Event()
        self.state = ServiceState.STOPPED
        self.start_time = 0.0

        self._lifecycle_lock = threading.Lock()
        self._resources: List[Tuple[str, Any, Callable[[Any], None]]] = []
        self._threads: List[threading.Thread] = []
        self._task_error: Optional[BaseException] = None

    # Hooks for subclasses

    def _startup(self) -> None:
        raise NotImplementedError("Subclasses must implement _startup")

    def _engine(self):
        """The running forwarding engine, if any"""
        return None

    def _metrics_line(self) -> str:
        engine = self._engine()
        if engine is None:
            return "no engine"
        stats = engine.stats()
        return (f"in={stats['packets_in']} pkts/{stats['bytes_in']} B, "
                f"out={stats['packets_out']} pkts/{stats['bytes_out']} B, "
                f"dropped={stats['frames_dropped']}")

    # Resources and tasks

    def _acquire(self, name: str, resource: Any,
                 closer: Optional[Callable[[Any], None]] = None) -> Any:
        """
        Register a resource for release on stop or failed startup

        Args:
            name: Label for logging
            resource: The acquired object
            closer: Callable releasing it (defaults to resource.close)

        Returns:
            The resource
        """
        if closer is None:
            closer = lambda r: r.close()
        self._resources.append((name, resource, closer))
        self.logger.debug(f"Acquired {name}")
        return resource

    def _spawn(self, name: str, target: Callable[[], None]) -> threading.Thread:
        thread = threading.Thread(target=self._run_task, args=(name, target),
                                  name=f"{self.name}-{name}")
        thread.daemon = True
        self._threads.append(thread)
        thread.start()
        return thread

    def _run_task(self, name: str, target: Callable[[], None]) -> None:
        try:
            target()
        except Exception as e:
            self.logger.exception(f"Task {name} crashed: {e}")
            if self._task_error is None:
                self._task_error = e
            self.stop_event.set()

    def _join_tasks(self) -> None:
        for thread in self._threads:
            if thread is not threading.current_thread():
                thread.join()
        self._threads = []

    def _release_resources(self) -> None:
        while self._resources:
            name, resource, closer = self._resources.pop()
            try:
                closer(resource)
                self.logger.info(f"Released {name}")
            except Exception as e:
                self.logger.error(f"Error releasing {name}: {e}")

    def _metrics_loop(self) -> None:
        while not self.stop_event.wait(self.metrics_interval):
            self.logger.info(f"Metrics: {self._metrics_line()}")

    # Public surface

    def start(self) -> None:
        """
        Start the service

        Raises:
            SetupError: If any startup step fails; everything acquired so
                far has been released when this is raised
        """
        with self._lifecycle_lock:
            if self.state is not ServiceState.STOPPED:
                self.logger.warning(f"{self.name} already {self.state.value}")
                return

            self.logger.info(f"Starting {self.name}")
            self.state = ServiceState.STARTING
            self.stop_event.clear()
            self._task_error = None

            try:
                self._startup()
            except Exception as e:
                self.logger.error(f"Error starting {self.name}: {e}")
                self.stop_event.set()
                self._join_tasks()
                self._release_resources()
                self.state = ServiceState.STOPPED
                if isinstance(e, SetupError):
                    raise
                raise SetupError(f"Error starting {self.name}: {e}") from e

            self.start_time = time.time()
            self.state = ServiceState.RUNNING
            self.logger.info(f"{self.name} running")

    def request_stop(self) -> None:
        """Ask every task to finish; returns immediately"""
        self.stop_event.set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """
        Wait for a stop request or a fatal error

        Returns:
            True if the service has been asked to stop
        """
        return self.stop_event.wait(timeout)

    def stop(self) -> None:
        """Stop the service and release its resources; idempotent"""
        self.stop_event.set()
        with self._lifecycle_lock:
            if self.state is ServiceState.STOPPED:
                return

            self.logger.info(f"Stopping {self.name}")
            self.state = ServiceState.STOPPING
            self._join_tasks()
            self._release_resources()
            self.state = ServiceState.STOPPED
            self.logger.info(f"{self.name} stopped")

    @property
    def running(self) -> bool:
        return self.state is ServiceState.RUNNING

    @property
    def fatal_error(self) -> Optional[BaseException]:
        engine = self._engine()
        if engine is not None and engine.fatal_error is not None:
            return engine.fatal_error
        return self._task_error

    def get_status(self) -> Dict[str, Any]:
        """
        Get the current status of the service

        Returns:
            Dictionary with status information
        """
        uptime = 0.0
        if self.running and self.start_time:
            uptime = time.time() - self.start_time

        engine = self._engine()
        status = {
            "mode": self.mode,
            "state": self.state.value,
            "uptime": uptime,
            "stats": engine.stats() if engine is not None else {},
            "timestamp": time.time(),
        }
        if self.fatal_error is not None:
            status["error"] = str(self.fatal_error)
        return status
