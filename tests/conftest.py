"""Test configuration and fixtures for Wikiforge tests."""

import pytest
import tempfile
import shutil
import os
import textwrap
from pathlib import Path

import sys
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from wikiforge_pkg.core import Wikiforge
from wikiforge_pkg.models import Page


def build_page(source_path, title=None, body='', tags=(), order=None, discovery_index=0, **extra):
    """Page with front matter metadata that matches its attributes."""
    metadata = dict(extra)
    if title is not None:
        metadata['title'] = title
    if tags:
        metadata['tags'] = list(tags)
    if order is not None:
        metadata['order'] = order
    return Page(
        source_path=source_path,
        title=title or os.path.splitext(os.path.basename(source_path))[0],
        body=body,
        tags=frozenset(tags),
        order=order,
        metadata=metadata,
        discovery_index=discovery_index,
    )


@pytest.fixture
def temp_dir():
    """Create a temporary directory for tests."""
    temp_dir = tempfile.mkdtemp()
    yield temp_dir
    shutil.rmtree(temp_dir, ignore_errors=True)


@pytest.fixture
def content_dir(temp_dir):
    """Empty content directory."""
    path = Path(temp_dir) / 'content'
    path.mkdir()
    return path


@pytest.fixture
def write_page(content_dir):
    """Write a document under the content directory."""
    def write(rel_path, text):
        path = content_dir / rel_path
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(textwrap.dedent(text).lstrip(), encoding='utf-8')
        return path
    return write


@pytest.fixture
def output_dir(temp_dir):
    return os.path.join(temp_dir, 'output')


@pytest.fixture
def make_site(temp_dir, content_dir, output_dir):
    """Wikiforge instance writing its output and cache inside the temp dir."""
    def make(**kwargs):
        options = dict(
            content_dir=str(content_dir),
            output_dir=output_dir,
            cache_file=os.path.join(temp_dir, 'cache.json'),
            highlight_languages=['typescript', 'python'],
        )
        options.update(kwargs)
        return Wikiforge(**options)
    return make


@pytest.fixture
def make_page():
    return build_page


@pytest.fixture
def linked_pages():
    """Intro links to Setup; Unrelated links nowhere."""
    return [
        build_page('a.md', title='Intro', body='Start with [[Setup]].\n', discovery_index=0),
        build_page('b.md', title='Setup', body='Install things.\n', discovery_index=1),
        build_page('c.md', title='Unrelated', body='Nothing to see.\n', discovery_index=2),
    ]
