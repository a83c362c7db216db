"""
Syntax highlighting for fenced code blocks.

A HighlighterRegistry maps a language tag to a formatter, a pure function
``formatter(code, language) -> html``. Pygments formatters are registered for
the configured languages; anything else is looked up and reported as
HighlighterUnavailable so the renderer can fall back to a plain block.
"""

import logging

from pygments import highlight
from pygments.formatters import HtmlFormatter
from pygments.lexers import get_lexer_by_name
from pygments.util import ClassNotFound

from .errors import HighlighterUnavailable

DEFAULT_STYLE = 'github-dark'
FALLBACK_STYLE = 'default'
CSS_CLASS = 'highlight'

logger = logging.getLogger('Wikiforge.Highlight')


class HighlighterRegistry:
    def __init__(self):
        self._formatters = {}

    def register(self, language, formatter, aliases=()):
        for name in (language,) + tuple(aliases):
            self._formatters[name.lower()] = formatter

    def get(self, language):
        if not language:
            raise HighlighterUnavailable(language)
        try:
            return self._formatters[language.lower()]
        except KeyError:
            raise HighlighterUnavailable(language)

    def __contains__(self, language):
        return bool(language) and language.lower() in self._formatters

    def languages(self):
        return sorted(self._formatters)


def pygments_formatter(lexer_name, css_class=CSS_CLASS):
    """Formatter for one Pygments lexer. Raises ClassNotFound for unknown lexers."""
    lexer = get_lexer_by_name(lexer_name)
    html_formatter = HtmlFormatter(cssclass=css_class)

    def format_code(code, language):
        return highlight(code, lexer, html_formatter)

    format_code.lexer = lexer
    return format_code


def create_registry(languages, css_class=CSS_CLASS):
    """Registry with a Pygments formatter (and its aliases) for each language."""
    registry = HighlighterRegistry()
    for language in languages or ():
        try:
            formatter = pygments_formatter(language, css_class)
        except ClassNotFound:
            logger.warning(f"Pygments has no lexer for '{language}'; its code blocks stay unhighlighted")
            continue
        registry.register(language, formatter, aliases=formatter.lexer.aliases)
    return registry


def stylesheet(style=DEFAULT_STYLE, css_class=CSS_CLASS):
    """CSS for the highlighted blocks, falling back to the default style."""
    try:
        formatter = HtmlFormatter(style=style)
    except ClassNotFound:
        logger.warning(f"Pygments style '{style}' not found. Falling back to '{FALLBACK_STYLE}'.")
        formatter = HtmlFormatter(style=FALLBACK_STYLE)
    return formatter.get_style_defs(f'.{css_class}')
