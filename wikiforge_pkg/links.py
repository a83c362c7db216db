"""
Wiki link extraction and resolution.

Link syntax:
  [[Target]]                 -> resolve Target, display the target page title
  [[Target|Display Text]]    -> resolve Target, custom display text
  [[Target#heading]]         -> resolve Target, append #heading to the href
  [[Target#heading|Text]]    -> both

Resolution order, first rule with any candidate wins:
  1. title        case-insensitive title equality
  2. path         slugified token equals the page slug ("guide/setup")
  3. path-suffix  page slug ends with "/<slugified token>"

Several candidates under the winning rule is an ambiguity: it is reported and
the earliest discovered page is used. No candidate at all is a dangling link.

References are read from the same mistune token stream the renderer uses, so
code blocks, code spans and raw HTML are skipped exactly where the output
shows them literally.
"""

import re
import logging

import mistune

from .errors import AmbiguousLinkError
from .models import (
    DanglingLink,
    LinkGraph,
    LinkReference,
    ResolvedLink,
    normalize_title,
    slugify_path,
)

# Bump when the resolution rules change; a different value forces a full rebuild.
LINK_RULES_VERSION = 2

WIKI_LINK_RE = re.compile(
    r"\[\["
    r"(?P<target>[^\]\|\n]+?)"
    r"(?:\|(?P<label>[^\]\n]+))?"
    r"\]\]"
)
# Group names must be unique among mistune's inline rules.
WIKI_LINK_PATTERN = (
    WIKI_LINK_RE.pattern
    .replace('?P<target>', '?P<wiki_target>')
    .replace('?P<label>', '?P<wiki_label>')
)
MARKDOWN_PLUGINS = ['table', 'task_lists', 'strikethrough']
DOCUMENT_SUFFIX_RE = re.compile(r"\.(?:md|markdown)$", re.IGNORECASE)

logger = logging.getLogger('Wikiforge.Links')


def parse_wiki_link(inline, m, state):
    state.append_token({
        'type': 'wiki_link',
        'raw': m.group('wiki_target'),
        'attrs': {'label': m.group('wiki_label')},
    })
    return m.end()


def wiki_link_plugin(render_link=None):
    """mistune plugin for [[...]]; render_link(raw, label) supplies the HTML."""
    def plugin(md):
        md.inline.register('wiki_link', WIKI_LINK_PATTERN, parse_wiki_link, before='link')
        if render_link and md.renderer and md.renderer.NAME == 'html':
            md.renderer.register('wiki_link', lambda renderer, raw, label=None: render_link(raw, label))
    return plugin


def markdown_tokens(markdown):
    """mistune AST of a document, with wiki links as 'wiki_link' tokens."""
    parser = mistune.create_markdown(renderer='ast', plugins=MARKDOWN_PLUGINS + [wiki_link_plugin()])
    return parser(markdown)


def iter_tokens(tokens):
    """Every token of an AST, depth first in document order."""
    for token in tokens:
        yield token
        children = token.get('children')
        if isinstance(children, list):
            yield from iter_tokens(children)


def token_text(token):
    """Plain text of an inline token tree."""
    if token['type'] == 'wiki_link':
        return token['attrs'].get('label') or token['raw']
    if 'children' in token:
        return ''.join(token_text(child) for child in token['children'])
    return token.get('raw', '')


def first_heading(markdown, level=1):
    """Text of the first heading of the given level, or None."""
    for token in iter_tokens(markdown_tokens(markdown)):
        if token['type'] == 'heading' and token.get('attrs', {}).get('level') == level:
            text = token_text(token).strip()
            if text:
                return text
    return None


def split_target(raw):
    """Split '[[target#anchor]]' content into (target, anchor)."""
    target, _, anchor = raw.partition('#')
    return target.strip(), (anchor.strip() or None)


def extract_references(page):
    """Wiki link references of a page, in document order."""
    references = []
    wiki_links = (token for token in iter_tokens(markdown_tokens(page.body)) if token['type'] == 'wiki_link')
    for token in wiki_links:
        target, anchor = split_target(token['raw'])
        if not target:
            continue
        label = token['attrs'].get('label')
        references.append(LinkReference(
            source=page.id,
            target=target,
            label=label.strip() if label and label.strip() else None,
            anchor=anchor,
            position=len(references),
        ))
    return references


class LinkResolver:
    """Index of the full page set used to resolve link tokens."""

    def __init__(self, pages):
        self.pages = sorted(pages, key=lambda page: page.discovery_index)
        self.by_title = {}
        self.by_slug = {}
        for page in self.pages:
            self.by_title.setdefault(normalize_title(page.title), []).append(page)
            self.by_slug.setdefault(page.slug, []).append(page)

    def candidates(self, token):
        """(rule, pages) for the first rule that matches, or (None, [])."""
        titled = self.by_title.get(normalize_title(token))
        if titled:
            return 'title', titled

        slug = slugify_path(DOCUMENT_SUFFIX_RE.sub('', token.strip()))
        if not slug:
            return None, []
        exact = self.by_slug.get(slug)
        if exact:
            return 'path', exact

        suffix = '/' + slug
        partial = [page for page in self.pages if page.slug.endswith(suffix)]
        if partial:
            return 'path-suffix', partial
        return None, []

    def resolve(self):
        """Resolve every page's references into a fresh LinkGraph."""
        graph = LinkGraph()
        forward = {page.id: set() for page in self.pages}
        backlinks = {page.id: set() for page in self.pages}

        for page in self.pages:
            references = extract_references(page)
            graph.references[page.id] = references
            outgoing = graph.outgoing.setdefault(page.id, [])
            missing = graph.missing.setdefault(page.id, [])
            for reference in references:
                rule, matches = self.candidates(reference.target)
                if not matches:
                    dangling = DanglingLink(reference)
                    graph.dangling.append(dangling)
                    missing.append(dangling)
                    logger.warning(f"{page.id}: dangling link [[{reference.target}]]")
                    continue

                if len(matches) > 1:
                    ambiguity = AmbiguousLinkError(page.id, reference.target, [m.id for m in matches])
                    graph.ambiguities.append(ambiguity)
                    logger.warning(str(ambiguity))

                target = matches[0]
                link = ResolvedLink(reference, target.id, rule)
                graph.resolved.append(link)
                outgoing.append(link)
                if target.id != page.id:
                    forward[page.id].add(target.id)
                    backlinks[target.id].add(page.id)

        graph.forward = {page_id: frozenset(ids) for page_id, ids in forward.items()}
        graph.backlinks = {page_id: frozenset(ids) for page_id, ids in backlinks.items()}
        logger.debug(
            f"Resolved {len(graph.resolved)} links, {len(graph.dangling)} dangling, "
            f"{len(graph.ambiguities)} ambiguous"
        )
        return graph


def resolve_links(pages):
    """Build the complete link graph for a page set."""
    return LinkResolver(pages).resolve()
