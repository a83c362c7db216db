"""Tests for watch mode."""

import os
import threading
from unittest.mock import Mock

from watchdog.events import FileCreatedEvent, FileModifiedEvent, FileMovedEvent, DirModifiedEvent

from wikiforge_pkg.models import BuildReport
from wikiforge_pkg.watch import ContentChangeHandler, watch_site


class TestContentChangeHandler:
    """Test cases for filtering file system events."""

    def test_relevant_paths(self, temp_dir):
        """Test documents and templates count, everything else is ignored."""
        output = os.path.join(temp_dir, 'output')
        roots = [os.path.join(temp_dir, 'content'), os.path.join(temp_dir, 'templates')]
        handler = ContentChangeHandler(ignored_dirs=[output], roots=roots)

        assert handler.is_relevant(os.path.join(temp_dir, 'content', 'a.md'), False)
        assert handler.is_relevant(os.path.join(temp_dir, 'templates', 'page.html'), False)
        assert handler.is_relevant(os.path.join(temp_dir, 'content', 'guide'), True)
        assert not handler.is_relevant(os.path.join(output, 'a.html'), False)
        assert not handler.is_relevant(os.path.join(temp_dir, 'content', 'notes.txt'), False)
        assert not handler.is_relevant(os.path.join(temp_dir, 'content', '.a.md.swp'), False)
        assert not handler.is_relevant(os.path.join(temp_dir, 'content', '_drafts', 'a.md'), False)
        assert not handler.is_relevant('', False)

    def test_hidden_parent_of_root_is_allowed(self, temp_dir):
        """Test only components below the watched root are filtered."""
        content = os.path.join(temp_dir, '_work', '.notes', 'content')
        handler = ContentChangeHandler(roots=[content])

        assert handler.is_relevant(os.path.join(content, 'a.md'), False)
        assert handler.is_relevant(os.path.join(content, 'guide', 'b.md'), False)
        assert not handler.is_relevant(os.path.join(content, '_drafts', 'a.md'), False)
        assert not handler.is_relevant(os.path.join(content, '.a.md.swp'), False)

    def test_watch_site_passes_roots(self, temp_dir):
        """Test the handler scheduled by watch_site filters below the site's directories."""
        site = Mock()
        site.content_dir = os.path.join(temp_dir, '_site', 'content')
        site.templates_dir = None
        site.output_dir = os.path.join(temp_dir, '_site', 'output')
        site.build.return_value = BuildReport()
        observer = Mock()
        stop = threading.Event()
        stop.set()

        watch_site(site, stop_event=stop, observer=observer)
        handler = observer.schedule.call_args[0][0]
        assert handler.roots == [os.path.abspath(site.content_dir)]
        assert handler.is_relevant(os.path.join(site.content_dir, 'a.md'), False)
        assert observer.schedule.call_count == 1

    def test_events_flag_changes(self, temp_dir):
        """Test a relevant event sets the change and cancel flags."""
        handler = ContentChangeHandler()
        path = os.path.join(temp_dir, 'a.md')
        handler.on_created(FileCreatedEvent(path))

        assert handler.changed.is_set()
        assert handler.cancel_event.is_set()
        assert handler.take_changes() == [path]
        assert not handler.changed.is_set()
        assert not handler.cancel_event.is_set()
        assert handler.take_changes() == []

    def test_moves_report_both_paths(self, temp_dir):
        """Test a rename reports the old and the new path."""
        handler = ContentChangeHandler()
        old = os.path.join(temp_dir, 'a.md')
        new = os.path.join(temp_dir, 'b.md')
        handler.on_moved(FileMovedEvent(old, new))
        assert handler.take_changes() == sorted([old, new])

    def test_directory_modifications_are_ignored(self, temp_dir):
        """Test a directory mtime change alone does not trigger a build."""
        handler = ContentChangeHandler()
        handler.on_modified(DirModifiedEvent(temp_dir))
        assert not handler.changed.is_set()

        handler.on_modified(FileModifiedEvent(os.path.join(temp_dir, 'a.md')))
        assert handler.changed.is_set()


class TestWatchSite:
    """Test cases for the watch loop."""

    def make_site(self, temp_dir):
        site = Mock()
        site.content_dir = os.path.join(temp_dir, 'content')
        site.templates_dir = os.path.join(temp_dir, 'templates')
        site.output_dir = os.path.join(temp_dir, 'output')
        site.watch_interval = 0.01
        return site

    def test_stop_before_changes(self, temp_dir):
        """Test the initial build runs and the observer is shut down."""
        site = self.make_site(temp_dir)
        initial = BuildReport()
        site.build.return_value = initial
        observer = Mock()
        stop = threading.Event()
        stop.set()

        assert watch_site(site, stop_event=stop, observer=observer) is initial
        site.build.assert_called_once_with()
        assert observer.schedule.call_count == 2
        observer.start.assert_called_once_with()
        observer.stop.assert_called_once_with()
        observer.join.assert_called_once_with()

    def test_change_triggers_rebuild(self, temp_dir):
        """Test a settled change rebuilds with the handler's cancel event."""
        site = self.make_site(temp_dir)
        stop = threading.Event()
        observer = Mock()
        reports = [BuildReport(), BuildReport()]

        def start():
            handler = observer.schedule.call_args[0][0]
            handler.handle(os.path.join(site.content_dir, 'a.md'), False)
            handler.last_change -= 10

        def build(**kwargs):
            if kwargs:
                stop.set()
            return reports[site.build.call_count - 1]

        observer.start.side_effect = start
        site.build.side_effect = build

        result = watch_site(site, stop_event=stop, observer=observer)

        assert result is reports[1]
        assert site.build.call_count == 2
        handler = observer.schedule.call_args[0][0]
        assert site.build.call_args.kwargs == {'cancel_event': handler.cancel_event}

    def test_keyboard_interrupt_stops_observer(self, temp_dir):
        """Test Ctrl+C ends the loop and still shuts the observer down."""
        site = self.make_site(temp_dir)
        initial = BuildReport()
        site.build.return_value = initial
        observer = Mock()

        def start():
            handler = observer.schedule.call_args[0][0]
            handler.changed.wait = Mock(side_effect=KeyboardInterrupt)

        observer.start.side_effect = start

        assert watch_site(site, stop_event=threading.Event(), observer=observer) is initial
        observer.stop.assert_called_once_with()
        observer.join.assert_called_once_with()
