#!/usr/bin/env python3
"""
Main entry point for the site mirror.
"""

import asyncio
import argparse
import logging
import signal
import sys
from typing import List, Optional

from sitemirror import __version__
from sitemirror.crawler.scheduler import CrawlerScheduler
from sitemirror.utils.config import Config, ConfigError, load_config
from sitemirror.utils.logger import setup_logging, log_system_info


class CrawlerApp:
    """Main application class for the site mirror."""

    def __init__(self):
        self.scheduler: Optional[CrawlerScheduler] = None
        self.logger = logging.getLogger(__name__)

    def setup_signal_handlers(self):
        """Setup signal handlers for graceful shutdown."""
        loop = asyncio.get_running_loop()

        def handle_signal(signum):
            self.logger.info(f"Received signal {signum}, initiating shutdown...")
            if self.scheduler:
                self.scheduler.stop()

        for signum in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(signum, handle_signal, signum)
            except NotImplementedError:
                # Not supported on Windows event loops
                pass

    async def run(self, config: Config) -> int:
        """Run the crawl. Returns the process exit code."""
        setup_logging(config.logging)
        log_system_info()
        self.setup_signal_handlers()

        self.logger.info("=== SITE MIRROR STARTING ===")
        self.logger.info(f"Start URL: {config.crawler.start_url}")
        self.logger.info(f"Max depth: {config.crawler.max_depth}")
        self.logger.info(f"Concurrency: {config.crawler.concurrency}")
        self.logger.info(f"Output directory: {config.crawler.output_dir}")
        self.logger.info(f"Respect robots.txt: {config.crawler.use_robots}")

        self.scheduler = CrawlerScheduler(config)
        try:
            await self.scheduler.initialize()
            await self.scheduler.run()
        except Exception as e:
            self.logger.debug("Crawl failed", exc_info=True)
            print(f"Error: {e}", file=sys.stderr)
            return 1
        finally:
            await self.scheduler.close()
            self.logger.info("=== SITE MIRROR FINISHED ===")

        return 0


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Mirror a single web site to disk",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py -url https://example.com/                # Mirror to ./example.com
  python main.py -url https://example.com/ -depth 2 -out mirror
  python main.py -url https://example.com/ -robots        # Honor robots.txt
  python main.py --config config.yaml                      # Settings from YAML
        """
    )

    parser.add_argument('-url', '--url', dest='start_url', help='Start URL')
    parser.add_argument('-depth', '--depth', dest='max_depth', type=int,
                        help='Maximum link depth from the start URL (default: 5)')
    parser.add_argument('-out', '--out', dest='output_dir',
                        help='Output directory (default: ./)')
    parser.add_argument('-concurrency', '--concurrency', dest='concurrency', type=int,
                        help='Number of concurrent workers (default: 5)')
    parser.add_argument('-robots', '--robots', dest='use_robots', action='store_true',
                        default=None, help='Honor robots.txt of the crawled domain')
    parser.add_argument('--config', help='Optional YAML configuration file')
    parser.add_argument('--max-duration', dest='max_duration', type=float,
                        help='Stop the crawl after this many seconds')
    parser.add_argument('--log-level', dest='log_level', help='Log level (default: INFO)')
    parser.add_argument('--version', action='version',
                        version=f'SiteMirror {__version__}')
    return parser


def parse_config(argv: Optional[List[str]] = None) -> Config:
    """Build the configuration from command-line arguments."""
    args = build_arg_parser().parse_args(argv)
    overrides = {
        'crawler': {
            'start_url': args.start_url,
            'max_depth': args.max_depth,
            'output_dir': args.output_dir,
            'concurrency': args.concurrency,
            'use_robots': args.use_robots,
            'max_duration': args.max_duration,
        },
        'logging': {
            'level': args.log_level,
        },
    }
    return load_config(args.config, overrides)


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    try:
        config = parse_config(argv)
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    app = CrawlerApp()
    try:
        return asyncio.run(app.run(config))
    except KeyboardInterrupt:
        print("\nInterrupted by user", file=sys.stderr)
        return 1


if __name__ == '__main__':
    sys.exit(main())
