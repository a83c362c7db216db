#!/usr/bin/env python3
"""
Settings loader for Wikiforge.
Supports configuration from wikiforge.yml, wikiforge.yaml, or wikiforge.json files.
"""

import os
import json
import hashlib
import yaml
from typing import Dict, Any, Optional

from .errors import ConfigurationError


class WikiforgeSettings:
    """Load and manage Wikiforge configuration settings."""

    # Default configuration
    DEFAULT_SETTINGS = {
        'content': 'content',
        'output': 'output',
        'templates': None,
        'site_url': None,
        'site_title': None,
        'cache_file': '.wikiforge-cache.json',
        'workers': None,
        'highlight_style': 'github-dark',
        'highlight_css': 'styles.css',
        'highlight_languages': ['typescript', 'javascript', 'python', 'bash', 'json', 'yaml'],
        'log_dir': None,
        'watch_interval': 1.0,
        'full': False,
        'watch': False,
    }

    # Config file names to look for (in order of preference)
    CONFIG_FILES = ['wikiforge.yml', 'wikiforge.yaml', 'wikiforge.json']

    # Settings that change every rendered page; a change forces a full rebuild.
    RENDER_SETTINGS = ('site_url', 'site_title', 'highlight_style', 'highlight_css', 'highlight_languages')

    def __init__(self, config_dir: str = None):
        """
        Initialize settings loader.

        Args:
            config_dir: Directory to look for config files. Defaults to current directory.
        """
        self.config_dir = config_dir or os.getcwd()
        self.settings = dict(self.DEFAULT_SETTINGS)
        self.config_file_path = None

    def load_settings(self) -> Dict[str, Any]:
        """
        Load settings from configuration file if it exists.

        Returns:
            Dictionary of configuration settings

        Raises:
            ConfigurationError: if the file cannot be read or holds unknown keys
        """
        config_file = self._find_config_file()

        if config_file:
            self.config_file_path = config_file
            loaded_settings = self._load_config_file(config_file)
            unknown = sorted(set(loaded_settings) - set(self.DEFAULT_SETTINGS))
            if unknown:
                raise ConfigurationError(
                    f"Unknown setting(s) in {config_file}: {', '.join(unknown)}"
                )
            self.settings.update(loaded_settings)

        return self.validate(self.settings)

    def _find_config_file(self) -> Optional[str]:
        """
        Find the first available configuration file.

        Returns:
            Path to config file or None if not found
        """
        for filename in self.CONFIG_FILES:
            config_path = os.path.join(self.config_dir, filename)
            if os.path.exists(config_path):
                return config_path
        return None

    def _load_config_file(self, config_path: str) -> Dict[str, Any]:
        """
        Load configuration from a file.

        Args:
            config_path: Path to the configuration file

        Returns:
            Dictionary of configuration settings
        """
        file_ext = os.path.splitext(config_path)[1].lower()
        try:
            with open(config_path, 'r', encoding='utf-8') as f:
                if file_ext in ['.yml', '.yaml']:
                    loaded = yaml.safe_load(f) or {}
                elif file_ext == '.json':
                    loaded = json.load(f) or {}
                else:
                    raise ConfigurationError(f"Unsupported config file format: {file_ext}")
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in configuration file {config_path}: {e}")
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Invalid JSON in configuration file {config_path}: {e}")
        except (IOError, OSError) as e:
            raise ConfigurationError(f"Error reading configuration file {config_path}: {e}")

        if not isinstance(loaded, dict):
            raise ConfigurationError(f"Configuration file {config_path} must contain a mapping")
        return loaded

    def validate(self, settings: Dict[str, Any]) -> Dict[str, Any]:
        """Check types and normalise list-valued settings."""
        validated = dict(settings)

        languages = validated.get('highlight_languages') or []
        if isinstance(languages, str):
            languages = [language.strip() for language in languages.split(',')]
        if not isinstance(languages, list) or not all(isinstance(language, str) for language in languages):
            raise ConfigurationError("highlight_languages must be a list of language names")
        validated['highlight_languages'] = [language for language in languages if language]

        workers = validated.get('workers')
        if workers is not None and (isinstance(workers, bool) or not isinstance(workers, int) or workers < 1):
            raise ConfigurationError(f"workers must be a positive integer, got {workers!r}")

        interval = validated.get('watch_interval')
        if isinstance(interval, bool) or not isinstance(interval, (int, float)) or interval <= 0:
            raise ConfigurationError(f"watch_interval must be a positive number, got {interval!r}")

        for key in ('content', 'output', 'cache_file'):
            if not isinstance(validated.get(key), str) or not validated[key]:
                raise ConfigurationError(f"{key} must be a non-empty path")

        return validated

    def create_sample_config(self, file_format: str = 'yml') -> str:
        """
        Create a sample configuration file.

        Args:
            file_format: Format for config file ('yml', 'yaml', or 'json')

        Returns:
            Path to created sample config file
        """
        filename = f'wikiforge.{file_format}'
        config_path = os.path.join(self.config_dir, filename)

        try:
            with open(config_path, 'w', encoding='utf-8') as f:
                if file_format in ['yml', 'yaml']:
                    f.write("# Wikiforge Configuration File\n\n")
                    f.write("# Site information\n")
                    f.write("site_url: https://example.com/docs/\n")
                    f.write("site_title: My Notes\n\n")
                    f.write("# Build settings\n")
                    f.write("content: content\n")
                    f.write("output: output\n")
                    f.write("cache_file: .wikiforge-cache.json\n")
                    f.write("# workers: 4\n\n")
                    f.write("# Code highlighting\n")
                    f.write("highlight_style: github-dark\n")
                    f.write("highlight_css: styles.css\n")
                    f.write("highlight_languages:\n")
                    f.write("  - typescript\n")
                    f.write("  - javascript\n\n")
                    f.write("# Development settings\n")
                    f.write("watch_interval: 1.0\n")
                elif file_format == 'json':
                    sample = {
                        'site_url': 'https://example.com/docs/',
                        'site_title': 'My Notes',
                        'content': 'content',
                        'output': 'output',
                        'cache_file': '.wikiforge-cache.json',
                        'highlight_style': 'github-dark',
                        'highlight_css': 'styles.css',
                        'highlight_languages': ['typescript', 'javascript'],
                        'watch_interval': 1.0,
                    }
                    json.dump(sample, f, indent=2)
                else:
                    raise ConfigurationError(f"Unsupported config file format: {file_format}")
        except (IOError, OSError) as e:
            raise ConfigurationError(f"Error writing configuration file {config_path}: {e}")

        return config_path

    def merge_with_args(self, args_dict: Dict[str, Any]) -> Dict[str, Any]:
        """
        Merge configuration settings with command-line arguments.
        Command-line arguments take precedence over config file settings.

        Args:
            args_dict: Dictionary of command-line arguments

        Returns:
            Merged configuration dictionary
        """
        merged = self.settings.copy()

        for key, value in args_dict.items():
            if value is None or key not in self.DEFAULT_SETTINGS:
                continue
            # Flags default to False on the command line; only True overrides the file.
            if isinstance(value, bool) and not value:
                continue
            merged[key] = value

        return self.validate(merged)


def settings_fingerprint(settings: Dict[str, Any], templates_dir: Optional[str] = None,
                         extra: Optional[Dict[str, Any]] = None) -> str:
    """Hash of everything global that affects rendered output."""
    digest = hashlib.sha256()
    relevant = {key: settings.get(key) for key in WikiforgeSettings.RENDER_SETTINGS}
    relevant.update(extra or {})
    digest.update(json.dumps(relevant, sort_keys=True, default=str).encode('utf-8'))
    if templates_dir and os.path.isdir(templates_dir):
        for root, dirs, files in os.walk(templates_dir):
            dirs.sort()
            for name in sorted(files):
                path = os.path.join(root, name)
                digest.update(os.path.relpath(path, templates_dir).encode('utf-8'))
                with open(path, 'rb') as f:
                    digest.update(f.read())
    return digest.hexdigest()
