"""
Wikiforge - a static site generator for wiki-linked Markdown notes.

Wikiforge turns a directory of Markdown documents with YAML front matter into
an HTML site. Pages reference each other with [[wiki links]], fenced code is
highlighted with Pygments, rebuilds only re-render what changed, and every
link in the output is made relative so the site works from any base path.
"""

__version__ = "1.0.0"

from .core import Wikiforge, build_site
from .models import BuildStatus

__all__ = ['Wikiforge', 'BuildStatus', 'build_site']
