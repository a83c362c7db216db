import os
import html
import logging

import mistune
from jinja2 import Environment, FileSystemLoader, TemplateNotFound, TemplateSyntaxError

from .errors import ConfigurationError, HighlighterUnavailable
from .highlight import HighlighterRegistry
from .links import MARKDOWN_PLUGINS, split_target, wiki_link_plugin
from .models import DanglingLink, normalize_title, sorted_pages, slugify

PACKAGE_TEMPLATES = os.path.join(os.path.dirname(os.path.abspath(__file__)), 'templates')


def tag_url(tag):
    return f"/tags/{slugify(tag) or 'tag'}.html"


class CodeRenderer(mistune.HTMLRenderer):
    """HTML renderer handing fenced code to the highlighter registry."""

    def __init__(self, highlighters):
        super().__init__(escape=False)
        self.highlighters = highlighters
        self.logger = logging.getLogger('Wikiforge.Render')

    def block_code(self, code, info=None):
        language = info.split(None, 1)[0] if info and info.strip() else None
        try:
            formatter = self.highlighters.get(language)
            return formatter(code, language)
        except HighlighterUnavailable:
            pass
        except Exception as e:
            self.logger.warning(f"Highlighter for '{language}' failed, rendering plain code: {e}")
        escaped_code = mistune.escape(code)
        if language:
            return '<pre><code class="language-{}">{}</code></pre>\n'.format(mistune.escape(language), escaped_code)
        return '<pre><code>{}</code></pre>\n'.format(escaped_code)


class PageRenderer:
    """Turns a Page plus the resolved link graph into a complete HTML document.

    Output depends only on its arguments, so the same page and link
    resolution always produce byte-identical HTML.
    """

    def __init__(self, templates_dir=None, highlighters=None, site_title=None, highlight_css='styles.css'):
        self.templates_dir = templates_dir or PACKAGE_TEMPLATES
        if not os.path.isdir(self.templates_dir):
            raise ConfigurationError(f"Templates directory not found: {self.templates_dir}")
        self.highlighters = highlighters or HighlighterRegistry()
        self.site_title = site_title
        self.highlight_css = highlight_css
        self.env = Environment(loader=FileSystemLoader([self.templates_dir, PACKAGE_TEMPLATES]))
        self.env.filters['tag_url'] = tag_url
        self.logger = logging.getLogger('Wikiforge.Render')

    def create_markdown_parser(self, render_link):
        return mistune.create_markdown(
            renderer=CodeRenderer(self.highlighters),
            plugins=MARKDOWN_PLUGINS + [wiki_link_plugin(render_link)]
        )

    def link_renderer(self, links, pages_by_id):
        def render_link(raw, label):
            target, anchor = split_target(raw)
            label = label.strip() if label and label.strip() else None
            link = links.get(normalize_title(target))
            if link is None or isinstance(link, DanglingLink):
                text = html.escape(label or target or raw.strip())
                title = html.escape(f"Missing page: {target}", quote=True)
                return f'<span class="wiki-link wiki-link-missing" title="{title}">{text}</span>'
            page = pages_by_id[link.target_id]
            href = page.url + (f"#{anchor}" if anchor else '')
            text = html.escape(label or page.title)
            return f'<a class="wiki-link" href="{html.escape(href, quote=True)}">{text}</a>'
        return render_link

    def render_body(self, page, graph, pages_by_id):
        parser = self.create_markdown_parser(self.link_renderer(graph.links_for(page.id), pages_by_id))
        return parser(page.body)

    def render_template(self, template_name, **context):
        """Render a Jinja2 template with the site-wide context."""
        try:
            template = self.env.get_template(template_name)
        except (TemplateNotFound, TemplateSyntaxError) as e:
            raise ConfigurationError(f"Template error in {template_name}: {e}")
        context.setdefault('site_title', self.site_title)
        context.setdefault('stylesheet', '/' + self.highlight_css.lstrip('/'))
        return template.render(**context)

    def render(self, page, graph, pages_by_id):
        content = self.render_body(page, graph, pages_by_id)
        backlinks = sorted_pages(pages_by_id[source_id] for source_id in graph.backlinks_of(page.id))
        return self.render_template(
            'page.html',
            page=page,
            title=page.title,
            content=content,
            tags=sorted(page.tags, key=lambda tag: (tag.casefold(), tag)),
            date=page.date.strftime('%B %d, %Y') if page.date else None,
            backlinks=backlinks,
        )

    def render_index(self, pages, tags):
        return self.render_template('index.html', title=self.site_title or 'Index', pages=pages, tags=tags)

    def render_tag(self, tag, pages):
        return self.render_template('tag.html', title=f"Tag: {tag}", tag=tag, pages=pages)
