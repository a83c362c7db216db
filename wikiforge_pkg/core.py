import os
import time
import shutil
import logging
import tempfile
from datetime import datetime
from xml.sax.saxutils import escape

from .builder import PageBuilder
from .cache import BuildCache
from .errors import BuildAborted, ConfigurationError, IOFailure, WikiforgeError
from .highlight import DEFAULT_STYLE, create_registry, stylesheet
from .links import LINK_RULES_VERSION, resolve_links
from .loader import ContentLoader
from .models import BuildReport, group_by_tag, slugify, sorted_pages
from .render import PACKAGE_TEMPLATES, PageRenderer
from .rewriter import rewrite_tree
from .settings import WikiforgeSettings, settings_fingerprint
from .watch import watch_site


class InfoFilter(logging.Filter):
    """Filter to allow only selected INFO messages (and every warning) on the console."""
    def filter(self, record):
        if record.levelno >= logging.WARNING:
            return True
        allowed_messages = [
            "Build succeeded",
            "Build failed",
            "Pages:",
            "Full rebuild",
            "Published site to",
            "Watching",
            "Change detected",
        ]
        return any(msg in record.getMessage() for msg in allowed_messages)


class Wikiforge:
    """Builds a wiki-linked site from a content directory.

    Stages run one after another over the whole page set: load, resolve
    links, render what is stale, then publish through a staging directory
    and rewrite links to be relative.
    """

    def __init__(self, content_dir='content', output_dir='output', templates_dir=None, site_url=None,
                 site_title=None, cache_file='.wikiforge-cache.json', workers=None,
                 highlight_style=DEFAULT_STYLE, highlight_css='styles.css', highlight_languages=None,
                 log_dir=None, watch_interval=1.0):
        self.content_dir = content_dir
        self.output_dir = os.path.abspath(output_dir)
        self.templates_dir = templates_dir
        self.site_url = site_url
        self.site_title = site_title
        self.cache_file = cache_file
        self.workers = workers
        self.highlight_style = highlight_style
        self.highlight_css = highlight_css.lstrip('/')
        self.highlight_languages = list(highlight_languages or [])
        self.log_dir = log_dir
        self.watch_interval = watch_interval
        self.last_report = None

        self.setup_logging()

        if not os.path.isdir(self.content_dir):
            raise ConfigurationError(f"Content directory not found: {self.content_dir}")
        if self.templates_dir and not os.path.isdir(self.templates_dir):
            raise ConfigurationError(f"Templates directory not found: {self.templates_dir}")

        self.loader = ContentLoader(self.content_dir)
        self.highlighters = create_registry(self.highlight_languages)
        self.renderer = PageRenderer(
            templates_dir=self.templates_dir,
            highlighters=self.highlighters,
            site_title=self.site_title,
            highlight_css=self.highlight_css,
        )
        self.builder = PageBuilder(self.renderer, workers=self.workers)

    @classmethod
    def from_settings(cls, settings):
        return cls(
            content_dir=settings['content'],
            output_dir=os.path.expanduser(settings['output']),
            templates_dir=settings.get('templates'),
            site_url=settings.get('site_url'),
            site_title=settings.get('site_title'),
            cache_file=settings['cache_file'],
            workers=settings.get('workers'),
            highlight_style=settings.get('highlight_style') or DEFAULT_STYLE,
            highlight_css=settings.get('highlight_css') or 'styles.css',
            highlight_languages=settings.get('highlight_languages'),
            log_dir=settings.get('log_dir'),
            watch_interval=settings.get('watch_interval', 1.0),
        )

    def setup_logging(self):
        """Set up logging configuration."""
        self.logger = logging.getLogger('Wikiforge')
        self.logger.setLevel(logging.DEBUG)

        if not any(getattr(handler, '_wikiforge_console', False) for handler in self.logger.handlers):
            # Console handler with filter
            console_handler = logging.StreamHandler()
            console_handler.setLevel(logging.INFO)
            console_handler.addFilter(InfoFilter())
            console_handler.setFormatter(logging.Formatter('%(message)s'))
            console_handler._wikiforge_console = True
            self.logger.addHandler(console_handler)

        if self.log_dir:
            # File handler for all logs
            os.makedirs(self.log_dir, exist_ok=True)
            log_filename = datetime.now().strftime('wikiforge_%Y-%m-%d_%H-%M-%S.log')
            file_handler = logging.FileHandler(os.path.join(self.log_dir, log_filename))
            file_handler.setLevel(logging.DEBUG)
            file_handler.setFormatter(logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s'))
            self.logger.addHandler(file_handler)

    def fingerprint(self):
        settings = {
            'site_url': self.site_url,
            'site_title': self.site_title,
            'highlight_style': self.highlight_style,
            'highlight_css': self.highlight_css,
            'highlight_languages': self.highlight_languages,
        }
        templates = self.templates_dir or PACKAGE_TEMPLATES
        return settings_fingerprint(settings, templates, extra={'link_rules_version': LINK_RULES_VERSION})

    def output_exists(self, rel_path):
        return os.path.isfile(os.path.join(self.output_dir, *rel_path.split('/')))

    def _check_cancelled(self, cancel_event, stage):
        if cancel_event is not None and cancel_event.is_set():
            raise BuildAborted(f"Build cancelled before {stage}")

    def build(self, full=False, cancel_event=None):
        """Run one build and publish it.

        Returns a BuildReport. I/O failures, configuration errors and
        cancellation abort before publishing and leave the previous output
        tree in place; per-page problems are collected in the report.
        """
        start_time = time.time()
        report = BuildReport(full_rebuild=full)
        try:
            self._build(report, full, cancel_event)
        except BuildAborted as e:
            report.fatal = str(e)
            self.logger.warning(str(e))
        except (IOFailure, ConfigurationError) as e:
            report.fatal = str(e)
            self.logger.error(f"Build failed: {e}")
        report.duration = time.time() - start_time
        report.finalize()
        self.log_summary(report)
        self.last_report = report
        return report

    def _build(self, report, full, cancel_event):
        loaded = self.loader.load()
        pages = loaded.pages
        report.pages_total = len(pages)
        report.load_errors.extend(loaded.errors)
        self._check_cancelled(cancel_event, 'link resolution')

        graph = resolve_links(pages)
        report.dangling.extend(graph.dangling)
        report.ambiguities.extend(graph.ambiguities)
        self._check_cancelled(cancel_event, 'rendering')

        fingerprint = self.fingerprint()
        previous_cache = BuildCache.empty() if full else BuildCache.load(self.cache_file)
        if not full and len(previous_cache) and previous_cache.fingerprint != fingerprint:
            self.logger.info("Full rebuild: settings, templates or link rules changed since the last build")
            full = True
            report.full_rebuild = True

        outcome = self.builder.build(
            pages, graph, previous_cache,
            full=full,
            output_exists=None if full else self.output_exists,
            fingerprint=fingerprint,
            cancel_event=cancel_event,
        )
        report.rendered = outcome.rendered
        report.skipped = sorted(outcome.plan.fresh)
        report.evicted = list(outcome.plan.evicted)
        self._check_cancelled(cancel_event, 'publishing')

        self.publish(pages, outcome, previous_cache, full)
        outcome.cache.save(self.cache_file)

    def publish(self, pages, outcome, previous_cache, full=False):
        """Write the new tree into a staging directory and swap it in."""
        parent = os.path.dirname(self.output_dir)
        try:
            os.makedirs(parent, exist_ok=True)
            staging = tempfile.mkdtemp(dir=parent, prefix='.wikiforge-staging-')
        except (IOError, OSError) as e:
            raise IOFailure(parent, e)

        try:
            if not full and len(previous_cache) and os.path.isdir(self.output_dir):
                shutil.rmtree(staging)
                shutil.copytree(self.output_dir, staging)
            for page_id in outcome.plan.evicted:
                entry = previous_cache.get(page_id)
                if entry:
                    stale_file = os.path.join(staging, *entry.output_path.split('/'))
                    if os.path.isfile(stale_file):
                        os.remove(stale_file)
            pages_by_id = {page.id: page for page in pages}
            for page_id, html in sorted(outcome.outputs.items()):
                self.write_file(staging, pages_by_id[page_id].output_path, html)

            self.build_index_pages(staging, pages)
            self.write_file(staging, self.highlight_css, stylesheet(self.highlight_style))
            if self.site_url:
                self.generate_xml_sitemap(staging, pages)
            rewrite_tree(staging, self.site_url)
            self.swap_in(staging)
        except (IOError, OSError) as e:
            shutil.rmtree(staging, ignore_errors=True)
            raise IOFailure(self.output_dir, e)
        except WikiforgeError:
            shutil.rmtree(staging, ignore_errors=True)
            raise
        self.logger.info(f"Published site to {self.output_dir}")

    def swap_in(self, staging):
        backup = None
        if os.path.exists(self.output_dir):
            backup = f"{self.output_dir}.previous-{os.getpid()}"
            if os.path.exists(backup):
                shutil.rmtree(backup)
            os.rename(self.output_dir, backup)
        try:
            os.rename(staging, self.output_dir)
        except OSError:
            if backup:
                os.rename(backup, self.output_dir)
            raise
        if backup:
            shutil.rmtree(backup, ignore_errors=True)

    def write_file(self, root, rel_path, content):
        path = os.path.join(root, *rel_path.split('/'))
        try:
            os.makedirs(os.path.dirname(path), exist_ok=True)
            with open(path, 'w', encoding='utf-8') as f:
                f.write(content)
        except (IOError, OSError) as e:
            raise IOFailure(path, e)
        self.logger.debug(f"Wrote {rel_path}")

    def build_index_pages(self, root, pages):
        """Index of every page in navigation order, plus one page per tag."""
        ordered = sorted_pages(pages)
        tags = group_by_tag(pages)
        tags_dir = os.path.join(root, 'tags')
        if os.path.isdir(tags_dir):
            shutil.rmtree(tags_dir)
        self.write_file(root, 'index.html', self.renderer.render_index(ordered, tags))
        for tag, tagged in tags:
            self.write_file(root, f"tags/{slugify(tag) or 'tag'}.html", self.renderer.render_tag(tag, tagged))

    def generate_xml_sitemap(self, root, pages):
        """Generate XML sitemap."""
        site_url = self.site_url.rstrip('/')
        sitemap_content = '''<?xml version="1.0" encoding="UTF-8"?>
<urlset xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">
'''
        sitemap_content += self.format_xml_sitemap_entry(f"{site_url}/index.html", None)
        for page in sorted_pages(pages):
            sitemap_content += self.format_xml_sitemap_entry(f"{site_url}{page.url}", page.date)
        sitemap_content += '</urlset>\n'
        self.write_file(root, 'sitemap.xml', sitemap_content)

    def format_xml_sitemap_entry(self, url, lastmod):
        """Format a single sitemap entry."""
        if lastmod is None:
            return f'''<url>
<loc>{escape(url)}</loc>
</url>
'''
        return f'''<url>
<loc>{escape(url)}</loc>
<lastmod>{lastmod.strftime('%Y-%m-%d')}</lastmod>
</url>
'''

    def log_summary(self, report):
        for line in report.summary_lines():
            if line.startswith(('Warning:', 'Error:', 'Fatal:')):
                self.logger.warning(line)
            else:
                self.logger.info(line)

    def watch(self, stop_event=None):
        """Build, then rebuild incrementally whenever the content changes."""
        return watch_site(self, stop_event=stop_event)


def build_site(config_dir=None, **overrides):
    """Load settings from config_dir, apply overrides and run one build."""
    loader = WikiforgeSettings(config_dir)
    loader.load_settings()
    settings = loader.merge_with_args(overrides)
    site = Wikiforge.from_settings(settings)
    return site.build(full=settings.get('full', False))
