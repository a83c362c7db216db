"""
Rewrite site links to be relative to the file that contains them.

Root-relative links ("/guide/setup.html") and absolute links on the site's
own URL ("https://example.com/docs/guide/setup.html" with site_url
"https://example.com/docs/") become paths relative to the referring file,
so the output tree works under any base path or straight from disk.
Relative, external and protocol-relative links are left alone, which makes
the rewrite idempotent.
"""

import os
import re
import logging
import posixpath
from urllib.parse import urlsplit

from .errors import IOFailure

LINK_ATTR_RE = re.compile(r'(?P<prefix>\b(?:href|src)\s*=\s*)(?P<quote>["\'])(?P<url>.*?)(?P=quote)', re.IGNORECASE)

logger = logging.getLogger('Wikiforge.Rewriter')


def site_path(url, site_url=None):
    """Site-root path for a link, or None when the link must not be touched."""
    if url.startswith('//'):
        return None
    if url.startswith('/'):
        return url
    if site_url:
        base = urlsplit(site_url)
        target = urlsplit(url)
        if target.scheme and target.netloc:
            if (target.scheme, target.netloc.lower()) != (base.scheme, base.netloc.lower()):
                return None
            base_path = base.path if base.path.endswith('/') else base.path + '/'
            full_path = target.path or '/'
            if full_path + '/' == base_path:
                full_path = base_path
            if not full_path.startswith(base_path):
                return None
            rest = full_path[len(base_path) - 1:]
            suffix = ''
            if target.query:
                suffix += '?' + target.query
            if target.fragment:
                suffix += '#' + target.fragment
            return rest + suffix
    return None


def relative_url(url, file_path, site_url=None):
    """Rewrite one link as seen from file_path (relative to the output root)."""
    path = site_path(url, site_url)
    if path is None:
        return url

    parts = urlsplit(path)
    target = parts.path or '/'
    if target.endswith('/'):
        target += 'index.html'

    start = posixpath.dirname(file_path.replace(os.sep, '/')) or '.'
    relative = posixpath.relpath(target.lstrip('/') or '.', start)

    if parts.query:
        relative += '?' + parts.query
    if parts.fragment:
        relative += '#' + parts.fragment
    return relative


def rewrite_html(html, file_path, site_url=None):
    def replace(m):
        new_url = relative_url(m.group('url'), file_path, site_url)
        return f"{m.group('prefix')}{m.group('quote')}{new_url}{m.group('quote')}"
    return LINK_ATTR_RE.sub(replace, html)


def rewrite_tree(root, site_url=None):
    """Rewrite every HTML file under root in place; returns how many changed."""
    changed = 0
    for directory, dirs, files in os.walk(root):
        dirs.sort()
        for name in sorted(files):
            if not name.lower().endswith(('.html', '.htm')):
                continue
            full_path = os.path.join(directory, name)
            rel_path = os.path.relpath(full_path, root).replace(os.sep, '/')
            try:
                with open(full_path, 'r', encoding='utf-8') as f:
                    original = f.read()
                rewritten = rewrite_html(original, rel_path, site_url)
                if rewritten != original:
                    with open(full_path, 'w', encoding='utf-8') as f:
                        f.write(rewritten)
                    changed += 1
                    logger.debug(f"Rewrote links in {rel_path}")
            except (IOError, OSError, UnicodeDecodeError) as e:
                raise IOFailure(full_path, e)
    return changed
