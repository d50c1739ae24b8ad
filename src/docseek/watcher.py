"""File watcher that keeps the index in sync with configured sources."""

import logging
import os
import signal
import threading
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Callable

from rich.console import Console
from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from .config import STATE_DIR, get_sources, load_ignore_patterns, run_dir
from .errors import WatcherError
from .ingest.indexer import Indexer, should_ignore
from .ingest.parsers import is_supported

logger = logging.getLogger(__name__)
console = Console()

LOCK_FILE = "watch.lock"
PID_FILE = "watch.pid"
DEFAULT_DEBOUNCE_MS = 300


# --- lock files -----------------------------------------------------------

def _lock_paths(project_root: str | Path) -> tuple[Path, Path]:
    base = run_dir(project_root)
    return base / LOCK_FILE, base / PID_FILE


def _pid_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists but owned by someone else
        return True
    return True


def cleanup_lock_files(project_root: str | Path) -> None:
    for path in _lock_paths(project_root):
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning(f"Could not remove {path}: {e}")


def is_watcher_running(project_root: str | Path) -> bool:
    """True if a live watcher holds the lock; stale locks are cleared."""
    lock_path, pid_path = _lock_paths(project_root)
    if not lock_path.exists():
        return False

    try:
        pid = int(pid_path.read_text(encoding="utf-8").strip())
    except (OSError, ValueError):
        pid = None

    if pid is not None and _pid_alive(pid):
        return True

    logger.info("Removing stale watcher lock")
    cleanup_lock_files(project_root)
    return False


def create_lock_files(project_root: str | Path) -> None:
    lock_path, pid_path = _lock_paths(project_root)
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    lock_path.write_text(datetime.now().isoformat(), encoding="utf-8")
    pid_path.write_text(str(os.getpid()), encoding="utf-8")


# --- debounce state -------------------------------------------------------

@dataclass
class WatchContext:
    """Mutable watcher state shared with the event handler.

    ``pending`` maps each path to its scheduled timer; a newer event for the
    same path cancels and replaces the older timer.
    """
    project_root: Path
    ignore_patterns: list[str] = field(default_factory=list)
    debounce_seconds: float = DEFAULT_DEBOUNCE_MS / 1000
    watched_files: set[Path] = field(default_factory=set)
    watched_dirs: set[Path] = field(default_factory=set)
    pending: dict[str, threading.Timer] = field(default_factory=dict)
    shutting_down: bool = False
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def in_scope(self, path: Path) -> bool:
        if path in self.watched_files:
            return True
        return any(path == d or d in path.parents for d in self.watched_dirs)

    def should_ignore(self, path: str | Path) -> bool:
        """Hidden paths, the state directory and ignore-file patterns are skipped."""
        rel = Path(os.path.relpath(Path(path), self.project_root)).as_posix()
        parts = rel.split("/")
        if any(p.startswith(".") and p not in (".", "..") for p in parts):
            return True
        if STATE_DIR in parts:
            return True
        return should_ignore(rel, self.ignore_patterns, [])

    def schedule(self, path: str, action: Callable[[], None]) -> bool:
        """Run ``action`` once ``path`` has been quiet for the debounce window."""
        def fire():
            with self._lock:
                # A replaced timer may still fire if cancel() lost the race
                if self.pending.get(path) is not timer:
                    return
                del self.pending[path]
            action()

        with self._lock:
            if self.shutting_down:
                return False
            existing = self.pending.get(path)
            if existing is not None:
                existing.cancel()
            timer = threading.Timer(self.debounce_seconds, fire)
            timer.daemon = True
            self.pending[path] = timer
            timer.start()
        return True

    def cancel_all(self) -> int:
        with self._lock:
            timers = list(self.pending.values())
            self.pending.clear()
        for timer in timers:
            timer.cancel()
        return len(timers)


# --- event handling -------------------------------------------------------

class ChangeHandler(FileSystemEventHandler):
    """Turns watchdog events into debounced index/delete calls."""

    def __init__(self, context: WatchContext, dispatch: Callable[[str, str], None]):
        super().__init__()
        self.context = context
        self.dispatch = dispatch

    def on_created(self, event: FileSystemEvent):
        if not event.is_directory:
            self._handle("add", os.fsdecode(event.src_path))

    def on_modified(self, event: FileSystemEvent):
        if not event.is_directory:
            self._handle("change", os.fsdecode(event.src_path))

    def on_deleted(self, event: FileSystemEvent):
        # Directory deletes remove everything under the prefix
        self._handle("delete", os.fsdecode(event.src_path))

    def on_moved(self, event: FileSystemEvent):
        self._handle("delete", os.fsdecode(event.src_path))
        if not event.is_directory:
            self._handle("add", os.fsdecode(event.dest_path))

    def _handle(self, event_type: str, path: str) -> None:
        ctx = self.context
        if ctx.shutting_down:
            return
        resolved = Path(path).resolve()
        if not ctx.in_scope(resolved) or ctx.should_ignore(resolved):
            return
        if event_type != "delete" and not is_supported(resolved):
            return
        ctx.schedule(str(resolved), lambda: self.dispatch(event_type, str(resolved)))


class ChangeWatcher:
    """Watches every source with ``watch: true`` and re-indexes on change."""

    def __init__(self, project_root: str | Path, config: dict[str, Any], indexer: Indexer):
        self.project_root = Path(project_root).resolve()
        self.config = config
        self.indexer = indexer
        debounce_ms = config.get("watch", {}).get("debounce_ms", DEFAULT_DEBOUNCE_MS)
        self.context = WatchContext(
            project_root=self.project_root,
            ignore_patterns=load_ignore_patterns(self.project_root),
            debounce_seconds=debounce_ms / 1000,
        )
        self.handler = ChangeHandler(self.context, self.process)
        self.observer = None
        self._stopped = threading.Event()
        self._source_names: dict[Path, str] = {}

    def process(self, event_type: str, path: str) -> None:
        """Apply one debounced change to the index."""
        rel = os.path.relpath(path, self.project_root)
        stamp = datetime.now().strftime("%H:%M:%S")
        try:
            if event_type == "delete":
                console.print(f"[dim]{stamp}[/] [red]Removed:[/] {rel}")
                self.indexer.delete_document(path)
                return

            label = "Added" if event_type == "add" else "Updated"
            console.print(f"[dim]{stamp}[/] [green]{label}:[/] {rel}")
            result = self.indexer.index_file(path, self._source_name(Path(path)))
            if not result.success:
                console.print(f"  [red]✗ {result.error}[/]")
            elif result.chunks:
                console.print(f"  [green]✓ Indexed {result.chunks} chunks[/]")
        except Exception as e:
            logger.warning(f"Error processing {rel}: {e}")

    def _source_name(self, path: Path) -> str:
        for root, name in self._source_names.items():
            if path == root or root in path.parents:
                return name
        return "default"

    def start(self) -> None:
        if self.observer is not None:
            raise WatcherError("Watcher is already running")
        if is_watcher_running(self.project_root):
            raise WatcherError("Another watcher instance is already running")

        sources = [s for s in get_sources(self.config) if s.watch]
        if not sources:
            raise WatcherError("No sources configured. Run `docseek add <path>` first.")

        observer = Observer()
        for source in sources:
            path = (self.project_root / source.path).resolve()
            self._source_names[path] = source.name
            if path.is_file():
                self.context.watched_files.add(path)
                observer.schedule(self.handler, str(path.parent), recursive=False)
            elif path.is_dir():
                self.context.watched_dirs.add(path)
                observer.schedule(self.handler, str(path), recursive=True)
            else:
                logger.warning(f"Source path does not exist, not watching: {source.path}")

        create_lock_files(self.project_root)
        self.context.shutting_down = False
        self.observer = observer
        observer.start()
        console.print(f"[bold]Watching {len(sources)} source(s) for changes... (Ctrl+C to stop)[/]")

    def run(self) -> None:
        """Start watching (blocks until Ctrl+C or SIGTERM)."""
        self.start()
        if threading.current_thread() is threading.main_thread():
            signal.signal(signal.SIGTERM, lambda signum, frame: self._stopped.set())
        try:
            while not self._stopped.wait(1):
                pass
        except KeyboardInterrupt:
            pass
        console.print("\n[yellow]Shutting down watcher...[/]")
        self.stop()
        console.print("[green]✓ Watcher stopped.[/]")

    def stop(self) -> None:
        """Cancel pending work, stop the observer and release the lock."""
        self.context.shutting_down = True
        cancelled = self.context.cancel_all()
        if cancelled:
            logger.info(f"Dropped {cancelled} pending change(s)")
        if self.observer is not None:
            self.observer.stop()
            self.observer.join()
            self.observer = None
        cleanup_lock_files(self.project_root)
        self._stopped.set()
