#!/usr/bin/env python3
"""
Command-line interface for Wikiforge.
"""

import os
import sys
import argparse
from typing import List, Optional

from . import __version__
from .core import Wikiforge
from .errors import ConfigurationError
from .settings import WikiforgeSettings


def create_sample_content(content_dir: str = 'content') -> None:
    """Create two linked sample pages."""
    os.makedirs(content_dir, exist_ok=True)

    intro = """---
title: Intro
order: 1
tags:
  - getting-started
date: 2025-01-01
---

Welcome! Start with [[Setup]], then read about [[Missing Page|pages that do not exist yet]].
"""

    setup = """---
title: Setup
order: 2
tags:
  - getting-started
date: 2025-01-02
---

Install the tools, then go back to the [[Intro]].

```typescript
const greeting: string = "hello";
```
"""

    for filename, text in (('intro.md', intro), ('setup.md', setup)):
        path = os.path.join(content_dir, filename)
        if os.path.exists(path):
            print(f"Sample page already exists: {path}")
        else:
            with open(path, 'w', encoding='utf-8') as f:
                f.write(text)
            print(f"Created sample page: {path}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog='wikiforge', description='Wikiforge - wiki-linked static site generator')
    parser.add_argument('--content', type=str,
                        help='Content directory containing markdown files')
    parser.add_argument('--output', type=str,
                        help='Output directory for generated site')
    parser.add_argument('--templates', type=str,
                        help='Templates directory overriding the built-in templates')
    parser.add_argument('--site-url', type=str,
                        help='Public URL of the site, used for the sitemap and same-site links')
    parser.add_argument('--site-title', type=str, help='Site title for page headers')
    parser.add_argument('--cache-file', type=str,
                        help='Where the incremental build cache is stored')
    parser.add_argument('--workers', type=int,
                        help='Number of render threads (defaults to the CPU count)')
    parser.add_argument('--highlight-style', type=str,
                        help='Pygments style for highlighted code')
    parser.add_argument('--languages', type=str,
                        help='Comma-separated list of languages to highlight')
    parser.add_argument('--log-dir', type=str,
                        help='Directory for detailed build logs')
    parser.add_argument('--full', action='store_true',
                        help='Ignore the build cache and render every page')
    parser.add_argument('--watch', action='store_true',
                        help='Watch the content directory and rebuild on changes')
    parser.add_argument('--init', type=str, choices=['yml', 'yaml', 'json'],
                        help='Create a sample configuration file and sample content')
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')
    return parser


def main(argv: Optional[List[str]] = None) -> None:
    """Main CLI entry point."""
    args = build_parser().parse_args(argv)

    # Handle init command
    if args.init:
        settings_loader = WikiforgeSettings()
        try:
            config_path = settings_loader.create_sample_config(args.init)
        except ConfigurationError as e:
            print(f"Error: {e}", file=sys.stderr)
            sys.exit(1)
        print(f"Created sample configuration file: {config_path}")
        create_sample_content()
        print("\nRun 'wikiforge' to build your site.")
        return

    args_dict = {k: v for k, v in vars(args).items() if v is not None}
    if 'languages' in args_dict:
        args_dict['highlight_languages'] = args_dict.pop('languages')

    try:
        # Command line arguments take precedence over the config file
        settings_loader = WikiforgeSettings()
        settings_loader.load_settings()
        final_settings = settings_loader.merge_with_args(args_dict)
        generator = Wikiforge.from_settings(final_settings)
    except ConfigurationError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    if final_settings['watch']:
        report = generator.watch()
    else:
        report = generator.build(full=final_settings['full'])
    sys.exit(report.exit_code)


if __name__ == '__main__':
    main()
