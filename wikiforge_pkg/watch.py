import os
import time
import logging
import threading

from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

logger = logging.getLogger('Wikiforge.Watch')


class ContentChangeHandler(FileSystemEventHandler):
    """Flags document and template changes; cancels a build that is running."""

    def __init__(self, extensions=('.md', '.markdown', '.html'), ignored_dirs=(), roots=()):
        self.extensions = tuple(extensions)
        self.roots = [os.path.abspath(path) for path in roots]
        self.ignored_dirs = [os.path.abspath(path) for path in ignored_dirs]
        self.changed = threading.Event()
        self.cancel_event = threading.Event()
        self.last_change = 0.0
        self._lock = threading.Lock()
        self._paths = set()

    def is_relevant(self, path, is_directory):
        if not path:
            return False
        absolute = os.path.abspath(path)
        if any(absolute == ignored or absolute.startswith(ignored + os.sep) for ignored in self.ignored_dirs):
            return False
        if any(part.startswith(('.', '_')) for part in self.watched_parts(absolute)):
            return False
        # A deleted or moved directory can take documents with it.
        return is_directory or absolute.lower().endswith(self.extensions)

    def watched_parts(self, absolute):
        """Path components below the watched root holding the path; just the name outside any root."""
        for root in self.roots:
            if absolute.startswith(root + os.sep):
                return [part for part in os.path.relpath(absolute, root).split(os.sep) if part]
        return [os.path.basename(absolute)]

    def handle(self, path, is_directory):
        if not self.is_relevant(path, is_directory):
            return
        with self._lock:
            self._paths.add(path)
            self.last_change = time.monotonic()
        self.changed.set()
        self.cancel_event.set()

    def take_changes(self):
        """Changed paths since the last call; clears the pending flags."""
        with self._lock:
            paths = sorted(self._paths)
            self._paths.clear()
            self.changed.clear()
            self.cancel_event.clear()
        return paths

    def on_modified(self, event):
        if not event.is_directory:
            self.handle(event.src_path, event.is_directory)

    def on_created(self, event):
        self.handle(event.src_path, event.is_directory)

    def on_deleted(self, event):
        self.handle(event.src_path, event.is_directory)

    def on_moved(self, event):
        self.handle(event.src_path, event.is_directory)
        self.handle(event.dest_path, event.is_directory)


def watch_site(site, stop_event=None, observer=None):
    """Build once, then rebuild incrementally after each burst of changes.

    A change arriving during a build aborts it and the loop builds again with
    the newer content. Returns the last build report.
    """
    stop_event = stop_event or threading.Event()
    roots = [site.content_dir] + ([site.templates_dir] if site.templates_dir else [])
    handler = ContentChangeHandler(ignored_dirs=[site.output_dir], roots=roots)
    observer = observer or Observer()
    observer.schedule(handler, os.path.abspath(site.content_dir), recursive=True)
    if site.templates_dir:
        observer.schedule(handler, os.path.abspath(site.templates_dir), recursive=True)

    report = site.build()
    observer.start()
    logger.info(f"Watching {site.content_dir} for changes (Ctrl+C to stop)")
    try:
        while not stop_event.is_set():
            if not handler.changed.wait(timeout=site.watch_interval):
                continue
            # Let a burst of saves settle before building.
            quiet_for = time.monotonic() - handler.last_change
            if quiet_for < site.watch_interval:
                stop_event.wait(site.watch_interval - quiet_for)
                continue
            paths = handler.take_changes()
            logger.info(f"Change detected in {len(paths)} path(s), rebuilding")
            for path in paths:
                logger.debug(f"Changed: {path}")
            report = site.build(cancel_event=handler.cancel_event)
            if report.fatal and handler.changed.is_set():
                logger.debug("Build was interrupted by newer changes")
    except KeyboardInterrupt:
        pass
    finally:
        observer.stop()
        observer.join()
    return report
