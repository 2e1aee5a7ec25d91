"""Engine base classes.

``Engine`` holds what every mode shares: the config, the access policy, the
peer resolver, statistics, and the code that runs a handler against a
``ConnectionContext``.

``ProcessEngine`` adds the process-per-connection machinery used by the
forking and client engines:
- Forking workers and turning fork failures into ``ForkError``
- Reaping finished workers from a SIGCHLD handler
- A SIGINT handler that exits cleanly, unless the caller installed its own
- A SIGTERM handler that takes every worker down with the supervisor

Only the engine's own workers are reaped and terminated; other children of
the embedding program are left alone. Signal handlers can only be installed
from the main thread, so a process engine refuses to start anywhere else.

Signal handlers never log: the logger may be holding its lock in the frame
they interrupt.
"""

import contextlib
import os
import signal
import sys
import threading
from collections.abc import Callable
from types import FrameType
from typing import Any

import psutil
from loguru import logger

from netserver.core.access import AccessPolicy, PeerIdentity
from netserver.core.config import ServerConfig
from netserver.core.context import ConnectionContext, LoopShutdown, ShutdownSignal
from netserver.core.exceptions import ForkError, InvalidPatternError, QuitRequested, StartupError
from netserver.core.resolver import PeerResolver, peer_resolver

from .stats import ServerStats

# Constants
WORKER_TERMINATE_TIMEOUT = 3.0  # Seconds to wait for workers after SIGTERM
POLL_INTERVAL = 0.5  # Seconds between shutdown checks in accept loops

SignalHandler = Callable[[int, FrameType | None], Any] | int | None


class Engine:
    """Base class of the dispatch engines."""

    mode_name = "base"

    def __init__(self, config: ServerConfig, resolver: PeerResolver | None = None) -> None:
        self.config = config
        self.resolver = resolver or peer_resolver
        self.policy = AccessPolicy(config.allowed, config.forbidden)
        self.stats = ServerStats()
        self.shutdown: ShutdownSignal = LoopShutdown()
        self.server_address: tuple[str, int] | None = None

    def run(self) -> Any:
        raise NotImplementedError

    def identify(self, sock: Any) -> PeerIdentity:
        peer = self.resolver.identify_socket(sock, self.config.reverse_lookup)
        logger.debug(f"request from {peer}")
        return peer

    def check_access(self, peer: PeerIdentity) -> bool:
        """Apply the access policy; a malformed pattern denies the connection."""
        try:
            allowed = self.policy.permits(peer)
        except InvalidPatternError as e:
            logger.error(f"Refusing {peer}: {e}")
            allowed = False
        if not allowed:
            logger.info(f"Connection from {peer} refused")
            self.stats.connection_denied()
        return allowed

    def make_context(self, sock: Any, peer: PeerIdentity) -> ConnectionContext:
        sock.settimeout(self.config.timeout)
        return ConnectionContext(
            sock,
            peer,
            self.shutdown,
            mode=self.mode_name,
            encoding=self.config.encoding,
        )

    def serve_connection(self, ctx: ConnectionContext, *args: Any) -> bool:
        """Run the handler for one connection and close it afterwards.

        Returns:
            bool: True if the handler asked the server to quit
        """
        quit_requested = False
        try:
            if self.config.redirect_stdio:
                with ctx.redirect_stdio():
                    self.config.handler(ctx, *args)
            else:
                self.config.handler(ctx, *args)
            self.stats.connection_served()
        except QuitRequested:
            quit_requested = True
            self.stats.connection_served()
        except Exception:
            logger.exception(f"Handler failed for {ctx.peer}")
            self.stats.connection_failed()
        finally:
            ctx.close()
        logger.debug(f"end of transaction with {ctx.peer}")
        return quit_requested


class ProcessEngine(Engine):
    """Engine running each connection in a forked worker process."""

    def __init__(self, config: ServerConfig, resolver: PeerResolver | None = None) -> None:
        super().__init__(config, resolver)
        self.root_pid: int | None = None
        self.interrupted = False
        self._saved_handlers: dict[int, SignalHandler] = {}

    def ensure_main_thread(self) -> None:
        """Raise ``StartupError`` unless called from the main thread.

        Must run before any socket is created.
        """
        if threading.current_thread() is not threading.main_thread():
            raise StartupError(f"{self.mode_name} mode must run in the main thread")

    def install_signal_handlers(self, trap_interrupt: bool = True) -> None:
        """Install SIGCHLD reaping plus default SIGINT/SIGTERM handling."""
        self._saved_handlers = {
            sig: signal.getsignal(sig) for sig in (signal.SIGINT, signal.SIGTERM, signal.SIGCHLD)
        }
        if trap_interrupt and self._saved_handlers[signal.SIGINT] in (
            signal.default_int_handler,
            signal.SIG_DFL,
            None,
        ):
            signal.signal(signal.SIGINT, self._handle_interrupt)
        if self._saved_handlers[signal.SIGTERM] in (signal.SIG_DFL, None):
            signal.signal(signal.SIGTERM, self._handle_terminate)
        signal.signal(signal.SIGCHLD, self._reap_workers)

    def restore_signal_handlers(self) -> None:
        for sig, handler in self._saved_handlers.items():
            if handler is not None:
                signal.signal(sig, handler)
        self._saved_handlers = {}

    def _handle_interrupt(self, signum: int, frame: FrameType | None) -> None:
        self.interrupted = True
        sys.exit(0)

    def _handle_terminate(self, signum: int, frame: FrameType | None) -> None:
        signal.signal(signal.SIGCHLD, signal.SIG_DFL)
        self.terminate_workers()
        # Die of SIGTERM with the default action
        signal.signal(signal.SIGTERM, signal.SIG_DFL)
        os.kill(os.getpid(), signal.SIGTERM)

    def _reap_workers(self, signum: int, frame: FrameType | None) -> None:
        for pid in list(self.stats.active_workers):
            try:
                reaped, _ = os.waitpid(pid, os.WNOHANG)
            except ChildProcessError:
                reaped = pid
            if reaped:
                self.stats.worker_reaped(pid)

    def terminate_workers(self) -> None:
        """Terminate the live workers, killing those that linger."""
        children = []
        for pid in list(self.stats.active_workers):
            with contextlib.suppress(psutil.Error):
                children.append(psutil.Process(pid))
        for child in children:
            with contextlib.suppress(psutil.NoSuchProcess):
                child.terminate()
        _, alive = psutil.wait_procs(children, timeout=WORKER_TERMINATE_TIMEOUT)
        for child in alive:
            with contextlib.suppress(psutil.NoSuchProcess):
                child.kill()

    def spawn_worker(self, work: Callable[[], int]) -> int:
        """Fork a worker running ``work``; its return value is the exit status.

        Returns:
            int: PID of the worker, in the parent only

        Raises:
            ForkError: If the process could not be forked
        """
        # Keep SIGCHLD from reaping the worker before it is registered
        previous_mask = signal.pthread_sigmask(signal.SIG_BLOCK, {signal.SIGCHLD})
        try:
            try:
                pid = os.fork()
            except OSError as e:
                raise ForkError(f"Cannot fork: {e}") from e
            if pid == 0:
                self._run_worker(work, previous_mask)
            self.stats.worker_started(pid)
        finally:
            signal.pthread_sigmask(signal.SIG_SETMASK, previous_mask)
        return pid

    def _run_worker(self, work: Callable[[], int], mask: Any) -> None:
        status = 1
        try:
            for sig in (signal.SIGINT, signal.SIGTERM, signal.SIGCHLD):
                signal.signal(sig, signal.SIG_DFL)
            signal.pthread_sigmask(signal.SIG_SETMASK, mask)
            status = work() or 0
        except SystemExit as e:
            status = e.code if isinstance(e.code, int) else (0 if e.code is None else 1)
        except BaseException:
            logger.exception(f"Worker {os.getpid()} failed")
        finally:
            for stream in (sys.stdout, sys.stderr):
                with contextlib.suppress(Exception):
                    stream.flush()
            os._exit(status)

    def wait_for(self, pid: int) -> None:
        """Wait for one worker, which the SIGCHLD handler may already have reaped."""
        with contextlib.suppress(ChildProcessError):
            os.waitpid(pid, 0)
        self.stats.worker_reaped(pid)
