"""
Exception hierarchy for Wikiforge.

Per-page problems (malformed front matter, undecodable files, duplicate pages,
ambiguous links)
are collected into the build report. I/O, configuration and cancellation
errors abort the build before anything is published.
"""


class WikiforgeError(Exception):
    """Base class for every error raised by Wikiforge."""


class PageError(WikiforgeError):
    """A problem confined to a single source document."""

    def __init__(self, path, reason):
        self.path = path
        self.reason = reason
        super().__init__(f"{path}: {reason}")


class MalformedFrontMatterError(PageError):
    """The metadata block of a document could not be parsed or validated."""


class DuplicatePageError(PageError):
    """Two source documents would be written to the same output file."""


class UndecodablePageError(PageError):
    """A source document is not valid UTF-8 text."""


class AmbiguousLinkError(WikiforgeError):
    """A wiki link token matched more than one page under the same rule."""

    def __init__(self, source, token, candidates):
        self.source = source
        self.token = token
        self.candidates = tuple(candidates)
        super().__init__(
            f"{source}: [[{token}]] is ambiguous between {', '.join(self.candidates)}; "
            f"using {self.candidates[0]}"
        )

    @property
    def chosen(self):
        return self.candidates[0]


class HighlighterUnavailable(LookupError):
    """No formatter is registered for a code block language."""

    def __init__(self, language):
        self.language = language
        super().__init__(f"No highlighter registered for language: {language!r}")


class IOFailure(WikiforgeError):
    """Reading a source file or writing the output tree failed."""

    def __init__(self, path, error):
        self.path = path
        self.error = error
        super().__init__(f"I/O failure on {path}: {error}")


class ConfigurationError(WikiforgeError):
    """Settings are invalid or the configuration file cannot be read."""


class BuildAborted(WikiforgeError):
    """The build was cancelled between stages; nothing was published."""
