"""Data models for Wikiforge pages, links and the build cache."""

import enum
import hashlib
import json
import posixpath
import re
import unicodedata
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, FrozenSet, List, Optional, Tuple

from .errors import AmbiguousLinkError

SLUG_INVALID_RE = re.compile(r'[^a-z0-9]+')
WHITESPACE_RE = re.compile(r'\s+')


def slugify(text):
    """Lowercase ASCII slug with runs of other characters collapsed to '-'."""
    normalized = unicodedata.normalize('NFKD', str(text)).encode('ascii', 'ignore').decode('ascii')
    return SLUG_INVALID_RE.sub('-', normalized.lower()).strip('-')


def slugify_path(path):
    """Slugify every segment of a POSIX path, dropping empty segments."""
    segments = [slugify(segment) for segment in path.replace('\\', '/').split('/')]
    return '/'.join(segment for segment in segments if segment)


def normalize_title(text):
    """Key used for case-insensitive title comparison."""
    return WHITESPACE_RE.sub(' ', str(text).strip()).casefold()


class PageState(enum.Enum):
    UNBUILT = 'unbuilt'
    RENDERING = 'rendering'
    BUILT = 'built'
    STALE = 'stale'
    EVICTED = 'evicted'


class BuildStatus(enum.Enum):
    SUCCEEDED = 'succeeded'
    SUCCEEDED_WITH_WARNINGS = 'succeeded with warnings'
    FAILED = 'failed'

    @property
    def exit_code(self):
        return {
            BuildStatus.SUCCEEDED: 0,
            BuildStatus.SUCCEEDED_WITH_WARNINGS: 2,
            BuildStatus.FAILED: 1,
        }[self]


@dataclass(frozen=True)
class Page:
    """One source document.

    ``source_path`` is the POSIX path relative to the content root and is the
    page's identity. Pages are never mutated; a changed source produces a new
    Page.
    """
    source_path: str
    title: str
    body: str
    tags: FrozenSet[str] = frozenset()
    order: Optional[int] = None
    date: Optional[datetime] = None
    metadata: Dict[str, Any] = field(default_factory=dict, compare=False, hash=False)
    discovery_index: int = 0

    @property
    def id(self):
        return self.source_path

    @property
    def content_hash(self):
        front_matter = json.dumps(self.metadata, sort_keys=True, default=str)
        digest = hashlib.sha256()
        digest.update(front_matter.encode('utf-8'))
        digest.update(b'\0')
        digest.update(self.body.encode('utf-8'))
        return digest.hexdigest()

    @property
    def slug(self):
        stem = posixpath.splitext(self.source_path)[0]
        return slugify_path(stem) or 'index'

    @property
    def output_path(self):
        return f"{self.slug}.html"

    @property
    def url(self):
        return f"/{self.output_path}"

    @property
    def sort_key(self):
        # Explicit order first, then discovery order.
        if self.order is None:
            return (1, 0, self.discovery_index)
        return (0, self.order, self.discovery_index)


@dataclass(frozen=True)
class LinkReference:
    source: str
    target: str
    label: Optional[str] = None
    anchor: Optional[str] = None
    position: int = 0

    @property
    def key(self):
        return normalize_title(self.target)


@dataclass(frozen=True)
class ResolvedLink:
    reference: LinkReference
    target_id: str
    rule: str


@dataclass(frozen=True)
class DanglingLink:
    reference: LinkReference

    def __str__(self):
        return f"{self.reference.source}: [[{self.reference.target}]] does not match any page"


@dataclass
class LinkGraph:
    """Result of resolving every page's wiki links against the page set."""
    references: Dict[str, List[LinkReference]] = field(default_factory=dict)
    resolved: List[ResolvedLink] = field(default_factory=list)
    dangling: List[DanglingLink] = field(default_factory=list)
    ambiguities: List[AmbiguousLinkError] = field(default_factory=list)
    forward: Dict[str, FrozenSet[str]] = field(default_factory=dict)
    backlinks: Dict[str, FrozenSet[str]] = field(default_factory=dict)
    outgoing: Dict[str, List[ResolvedLink]] = field(default_factory=dict)
    missing: Dict[str, List[DanglingLink]] = field(default_factory=dict)

    def dependencies_of(self, page_id):
        return self.forward.get(page_id, frozenset())

    def backlinks_of(self, page_id):
        return self.backlinks.get(page_id, frozenset())

    def links_for(self, page_id):
        """Map of reference key to ResolvedLink or DanglingLink for one page."""
        links = {}
        for link in self.outgoing.get(page_id, ()):
            links.setdefault(link.reference.key, link)
        for link in self.missing.get(page_id, ()):
            links.setdefault(link.reference.key, link)
        return links

    def link_hash(self, page_id, pages_by_id):
        """Fingerprint of everything from other pages that appears in this page's HTML."""
        outgoing = []
        for link in self.outgoing.get(page_id, ()):
            target = pages_by_id[link.target_id]
            outgoing.append([link.reference.target, target.id, target.title, target.output_path])
        missing = sorted(link.reference.target for link in self.missing.get(page_id, ()))
        incoming = sorted(
            [source_id, pages_by_id[source_id].title, pages_by_id[source_id].output_path]
            for source_id in self.backlinks_of(page_id)
            if source_id in pages_by_id
        )
        payload = json.dumps([outgoing, missing, incoming], sort_keys=True)
        return hashlib.sha256(payload.encode('utf-8')).hexdigest()


@dataclass(frozen=True)
class CacheEntry:
    content_hash: str
    dependencies: FrozenSet[str]
    link_hash: str
    output_path: str
    rendered_at: float

    def to_dict(self):
        return {
            'content_hash': self.content_hash,
            'dependencies': sorted(self.dependencies),
            'link_hash': self.link_hash,
            'output_path': self.output_path,
            'rendered_at': self.rendered_at,
        }

    @classmethod
    def from_dict(cls, data):
        return cls(
            content_hash=data['content_hash'],
            dependencies=frozenset(data.get('dependencies', ())),
            link_hash=data.get('link_hash', ''),
            output_path=data['output_path'],
            rendered_at=float(data.get('rendered_at', 0.0)),
        )


@dataclass
class BuildReport:
    """Summary of one build, as shown to the user at the end."""
    status: BuildStatus = BuildStatus.SUCCEEDED
    pages_total: int = 0
    rendered: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    evicted: List[str] = field(default_factory=list)
    load_errors: List[Exception] = field(default_factory=list)
    dangling: List[DanglingLink] = field(default_factory=list)
    ambiguities: List[AmbiguousLinkError] = field(default_factory=list)
    fatal: Optional[str] = None
    full_rebuild: bool = False
    duration: float = 0.0

    @property
    def exit_code(self):
        return self.status.exit_code

    def warnings_by_page(self):
        warnings = {}
        for link in self.dangling:
            warnings.setdefault(link.reference.source, []).append(str(link))
        for ambiguity in self.ambiguities:
            warnings.setdefault(ambiguity.source, []).append(str(ambiguity))
        return warnings

    def finalize(self):
        if self.fatal or self.load_errors:
            self.status = BuildStatus.FAILED
        elif self.dangling or self.ambiguities:
            self.status = BuildStatus.SUCCEEDED_WITH_WARNINGS
        else:
            self.status = BuildStatus.SUCCEEDED
        return self.status

    def summary_lines(self) -> List[str]:
        lines = [
            f"Build {self.status.value} in {self.duration:.3f} seconds.",
            f"Pages: {self.pages_total} total, {len(self.rendered)} rendered, "
            f"{len(self.skipped)} unchanged, {len(self.evicted)} removed.",
        ]
        for page_id, messages in sorted(self.warnings_by_page().items()):
            for message in messages:
                lines.append(f"Warning: {message}")
        for error in self.load_errors:
            lines.append(f"Error: {error}")
        if self.fatal:
            lines.append(f"Fatal: {self.fatal}")
        return lines


def sorted_pages(pages) -> List[Page]:
    return sorted(pages, key=lambda page: page.sort_key)


def group_by_tag(pages) -> List[Tuple[str, List[Page]]]:
    """Tags in alphabetical order, each with its pages in navigation order."""
    tagged = {}
    for page in sorted_pages(pages):
        for tag in page.tags:
            tagged.setdefault(tag, []).append(page)
    return sorted(tagged.items(), key=lambda item: (item[0].casefold(), item[0]))
