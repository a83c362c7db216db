import os
import re
import logging
from datetime import datetime, date
from dataclasses import dataclass, field
from typing import List

import yaml

from .errors import DuplicatePageError, IOFailure, MalformedFrontMatterError, UndecodablePageError
from .links import first_heading
from .models import Page

FRONT_MATTER_RE = re.compile(r'\A---[ \t]*\r?\n(.*?)\r?\n---[ \t]*(?:\r?\n|\Z)', re.DOTALL)
EMPTY_FRONT_MATTER_RE = re.compile(r'\A---[ \t]*\r?\n---[ \t]*(?:\r?\n|\Z)')
DATE_FORMATS = ['%Y-%m-%dT%H:%M:%S', '%Y-%m-%d %H:%M:%S', '%Y-%m-%d', '%b %d, %Y']


@dataclass
class LoadResult:
    pages: List[Page] = field(default_factory=list)
    errors: List[Exception] = field(default_factory=list)


def parse_date(value):
    """Parse a front matter date; None when absent, ValueError when unreadable."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, str):
        for fmt in DATE_FORMATS:
            try:
                return datetime.strptime(value.strip(), fmt)
            except ValueError:
                continue
    raise ValueError(f"unrecognised date {value!r}")


def split_front_matter(text, path):
    """Split a document into (metadata, body).

    A document without a leading ``---`` block has empty metadata.
    """
    if EMPTY_FRONT_MATTER_RE.match(text):
        return {}, EMPTY_FRONT_MATTER_RE.sub('', text, count=1)
    match = FRONT_MATTER_RE.match(text)
    if not match:
        if text.startswith('---'):
            raise MalformedFrontMatterError(path, "front matter block is not closed")
        return {}, text
    try:
        metadata = yaml.safe_load(match.group(1))
    except yaml.YAMLError as e:
        raise MalformedFrontMatterError(path, f"invalid YAML: {e}")
    if metadata is None:
        metadata = {}
    if not isinstance(metadata, dict):
        raise MalformedFrontMatterError(path, "front matter must be a mapping")
    return metadata, text[match.end():]


class ContentLoader:
    def __init__(self, content_dir, extensions=('.md', '.markdown')):
        self.content_dir = content_dir
        self.extensions = tuple(extensions)
        self.logger = logging.getLogger('Wikiforge.Loader')

    def discover(self):
        """Relative POSIX paths of every document, sorted for a stable discovery order."""
        if not os.path.isdir(self.content_dir):
            raise IOFailure(self.content_dir, "content directory does not exist")
        found = []
        for root, dirs, files in os.walk(self.content_dir):
            # Hidden and underscore-prefixed entries are site internals, not pages.
            dirs[:] = [d for d in dirs if not d.startswith(('.', '_'))]
            for name in files:
                if name.startswith(('.', '_')) or not name.lower().endswith(self.extensions):
                    continue
                rel = os.path.relpath(os.path.join(root, name), self.content_dir)
                found.append(rel.replace(os.sep, '/'))
        return sorted(found)

    def read(self, rel_path):
        path = os.path.join(self.content_dir, *rel_path.split('/'))
        try:
            with open(path, 'r', encoding='utf-8') as f:
                return f.read()
        except UnicodeDecodeError as e:
            raise UndecodablePageError(rel_path, f"not valid UTF-8 text: {e.reason} at byte {e.start}")
        except (IOError, OSError) as e:
            raise IOFailure(path, e)

    def parse(self, rel_path, text, discovery_index=0):
        """Build a Page from document text, validating the metadata block."""
        metadata, body = split_front_matter(text, rel_path)

        title = metadata.get('title')
        if title is not None and not isinstance(title, (str, int, float)):
            raise MalformedFrontMatterError(rel_path, "title must be a string")
        if title is None or not str(title).strip():
            title = first_heading(body) or os.path.splitext(os.path.basename(rel_path))[0]

        tags = metadata.get('tags', [])
        if tags is None:
            tags = []
        elif isinstance(tags, str):
            tags = [tags]
        if not isinstance(tags, list) or not all(isinstance(tag, str) for tag in tags):
            raise MalformedFrontMatterError(rel_path, "tags must be a string or a list of strings")

        order = metadata.get('order')
        if order is not None and (isinstance(order, bool) or not isinstance(order, int)):
            raise MalformedFrontMatterError(rel_path, f"order must be an integer, got {order!r}")

        try:
            page_date = parse_date(metadata.get('date'))
        except ValueError as e:
            raise MalformedFrontMatterError(rel_path, str(e))

        return Page(
            source_path=rel_path,
            title=str(title).strip(),
            body=body,
            tags=frozenset(tag.strip() for tag in tags if tag.strip()),
            order=order,
            date=page_date,
            metadata=metadata,
            discovery_index=discovery_index,
        )

    def load(self):
        """Load every document.

        Per-page errors, undecodable files included, are collected in the
        result and the page is left out; other read failures raise IOFailure.
        """
        result = LoadResult()
        claimed = {}
        for rel_path in self.discover():
            try:
                text = self.read(rel_path)
                page = self.parse(rel_path, text, discovery_index=len(result.pages))
            except (UndecodablePageError, MalformedFrontMatterError) as e:
                self.logger.error(f"Skipping {rel_path}: {e.reason}")
                result.errors.append(e)
                continue

            if page.output_path in claimed:
                error = DuplicatePageError(
                    rel_path, f"output {page.output_path} already produced by {claimed[page.output_path]}"
                )
                self.logger.error(f"Skipping {rel_path}: {error.reason}")
                result.errors.append(error)
                continue

            claimed[page.output_path] = rel_path
            result.pages.append(page)
            self.logger.debug(f"Loaded {rel_path} ({page.title})")

        self.logger.info(f"Loaded {len(result.pages)} pages from {self.content_dir}")
        return result
