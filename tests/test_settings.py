"""Tests for WikiforgeSettings."""

import os
import json

import pytest

from wikiforge_pkg.errors import ConfigurationError
from wikiforge_pkg.settings import WikiforgeSettings, settings_fingerprint


def write_config(directory, name, text):
    with open(os.path.join(directory, name), 'w') as f:
        f.write(text)


class TestLoadSettings:
    """Test cases for reading configuration files."""

    def test_defaults_without_config(self, temp_dir):
        """Test the defaults are used when no file exists."""
        loader = WikiforgeSettings(temp_dir)
        settings = loader.load_settings()

        assert loader.config_file_path is None
        assert settings['content'] == 'content'
        assert settings['output'] == 'output'
        assert settings['highlight_style'] == 'github-dark'
        assert 'typescript' in settings['highlight_languages']

    def test_yaml_config(self, temp_dir):
        """Test values from wikiforge.yml override the defaults."""
        write_config(temp_dir, 'wikiforge.yml', "site_title: Notes\nworkers: 2\nhighlight_languages: python, bash\n")
        loader = WikiforgeSettings(temp_dir)
        settings = loader.load_settings()

        assert loader.config_file_path == os.path.join(temp_dir, 'wikiforge.yml')
        assert settings['site_title'] == 'Notes'
        assert settings['workers'] == 2
        assert settings['highlight_languages'] == ['python', 'bash']

    def test_yml_preferred_over_json(self, temp_dir):
        """Test the lookup order of configuration file names."""
        write_config(temp_dir, 'wikiforge.json', json.dumps({'site_title': 'From JSON'}))
        write_config(temp_dir, 'wikiforge.yml', "site_title: From YAML\n")
        assert WikiforgeSettings(temp_dir).load_settings()['site_title'] == 'From YAML'

    def test_json_config(self, temp_dir):
        """Test JSON configuration files."""
        write_config(temp_dir, 'wikiforge.json', json.dumps({'output': 'public'}))
        assert WikiforgeSettings(temp_dir).load_settings()['output'] == 'public'

    @pytest.mark.parametrize('name, text', [
        ('wikiforge.yml', "site_title: [broken\n"),
        ('wikiforge.json', "{broken"),
        ('wikiforge.yml', "- a\n- list\n"),
        ('wikiforge.yml', "unknown_option: 1\n"),
        ('wikiforge.yml', "workers: 0\n"),
        ('wikiforge.yml', "workers: many\n"),
        ('wikiforge.yml', "watch_interval: -1\n"),
        ('wikiforge.yml', "content: ''\n"),
        ('wikiforge.yml', "highlight_languages: 3\n"),
    ])
    def test_invalid_config(self, temp_dir, name, text):
        """Test bad files and bad values raise ConfigurationError."""
        write_config(temp_dir, name, text)
        with pytest.raises(ConfigurationError):
            WikiforgeSettings(temp_dir).load_settings()


class TestMergeWithArgs:
    """Test cases for command line overrides."""

    def test_args_take_precedence(self, temp_dir):
        """Test command line values beat the config file."""
        write_config(temp_dir, 'wikiforge.yml', "output: from-file\nsite_title: File\n")
        loader = WikiforgeSettings(temp_dir)
        loader.load_settings()
        merged = loader.merge_with_args({'output': 'from-args', 'site_title': None})

        assert merged['output'] == 'from-args'
        assert merged['site_title'] == 'File'

    def test_false_flags_do_not_override(self, temp_dir):
        """Test unset boolean flags keep the configured value."""
        loader = WikiforgeSettings(temp_dir)
        loader.settings['full'] = True
        merged = loader.merge_with_args({'full': False, 'watch': True, 'init': 'yml'})

        assert merged['full'] is True
        assert merged['watch'] is True
        assert 'init' not in merged

    def test_invalid_override(self, temp_dir):
        """Test overrides are validated too."""
        loader = WikiforgeSettings(temp_dir)
        with pytest.raises(ConfigurationError):
            loader.merge_with_args({'workers': -3})


class TestSampleConfig:
    """Test cases for create_sample_config."""

    @pytest.mark.parametrize('file_format', ['yml', 'yaml', 'json'])
    def test_sample_config_loads(self, temp_dir, file_format):
        """Test every sample format is a valid configuration."""
        loader = WikiforgeSettings(temp_dir)
        path = loader.create_sample_config(file_format)

        assert path == os.path.join(temp_dir, f'wikiforge.{file_format}')
        settings = WikiforgeSettings(temp_dir).load_settings()
        assert settings['site_title'] == 'My Notes'
        assert settings['highlight_languages'] == ['typescript', 'javascript']

    def test_unsupported_format(self, temp_dir):
        """Test an unknown format is rejected."""
        with pytest.raises(ConfigurationError):
            WikiforgeSettings(temp_dir).create_sample_config('toml')


class TestFingerprint:
    """Test cases for settings_fingerprint."""

    def test_render_settings_change_fingerprint(self):
        """Test only settings that affect rendering matter."""
        base = dict(WikiforgeSettings.DEFAULT_SETTINGS)
        assert settings_fingerprint(base) == settings_fingerprint(dict(base, workers=8, output='elsewhere'))
        assert settings_fingerprint(base) != settings_fingerprint(dict(base, site_title='Other'))
        assert settings_fingerprint(base) != settings_fingerprint(base, extra={'link_rules_version': 2})

    def test_template_contents_change_fingerprint(self, temp_dir):
        """Test editing a template changes the fingerprint."""
        settings = dict(WikiforgeSettings.DEFAULT_SETTINGS)
        write_config(temp_dir, 'page.html', "v1")
        before = settings_fingerprint(settings, temp_dir)
        write_config(temp_dir, 'page.html', "v2")
        assert settings_fingerprint(settings, temp_dir) != before
