import os
import json
import logging
import tempfile

from .errors import IOFailure
from .models import CacheEntry

CACHE_FORMAT_VERSION = 1

logger = logging.getLogger('Wikiforge.Cache')


class BuildCache:
    """Per-page build state carried from one build to the next.

    A BuildCache is a value: builds take the previous cache and return a new
    one instead of mutating shared state.
    """

    def __init__(self, entries=None, fingerprint=''):
        self._entries = dict(entries or {})
        self.fingerprint = fingerprint

    @classmethod
    def empty(cls):
        return cls()

    def get(self, page_id):
        return self._entries.get(page_id)

    def __contains__(self, page_id):
        return page_id in self._entries

    def __len__(self):
        return len(self._entries)

    def __iter__(self):
        return iter(sorted(self._entries))

    def __eq__(self, other):
        if not isinstance(other, BuildCache):
            return NotImplemented
        return self._entries == other._entries and self.fingerprint == other.fingerprint

    def items(self):
        return sorted(self._entries.items())

    def reverse_dependencies(self):
        """Map of page id to the ids whose previous render depended on it."""
        reverse = {}
        for page_id, entry in self._entries.items():
            for dependency in entry.dependencies:
                reverse.setdefault(dependency, set()).add(page_id)
        return reverse

    def to_dict(self):
        return {
            'version': CACHE_FORMAT_VERSION,
            'fingerprint': self.fingerprint,
            'pages': {page_id: entry.to_dict() for page_id, entry in self.items()},
        }

    @classmethod
    def from_dict(cls, data):
        if not isinstance(data, dict) or data.get('version') != CACHE_FORMAT_VERSION:
            return cls.empty()
        pages = data.get('pages')
        if not isinstance(pages, dict):
            return cls.empty()
        entries = {}
        for page_id, entry in pages.items():
            try:
                entries[page_id] = CacheEntry.from_dict(entry)
            except (KeyError, TypeError, ValueError):
                logger.debug(f"Dropping unreadable cache entry for {page_id}")
        return cls(entries, data.get('fingerprint', ''))

    @classmethod
    def load(cls, path):
        """Load a cache file, returning an empty cache when missing or corrupt."""
        if not path or not os.path.exists(path):
            return cls.empty()
        try:
            with open(path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (json.JSONDecodeError, UnicodeDecodeError, TypeError) as e:
            logger.warning(f"Ignoring corrupt build cache {path}: {e}")
            return cls.empty()
        except (IOError, OSError) as e:
            raise IOFailure(path, e)
        return cls.from_dict(data)

    def save(self, path):
        """Write the cache atomically next to its final location."""
        directory = os.path.dirname(os.path.abspath(path))
        try:
            os.makedirs(directory, exist_ok=True)
            fd, temp_path = tempfile.mkstemp(dir=directory, prefix='.wikiforge-cache-', suffix='.json')
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                json.dump(self.to_dict(), f, indent=2, sort_keys=True)
            os.replace(temp_path, path)
        except (IOError, OSError) as e:
            raise IOFailure(path, e)
