import argparse
import logging
import signal
import sys
import time
from typing import List, Optional

from embybridge.application.matching import TrackMatcher
from embybridge.application.pipeline import ImportPipeline
from embybridge.crosscutting.config import ConfigError, Settings, load_settings
from embybridge.crosscutting.logging import setup_logging
from embybridge.crosscutting.reporting import create_report, save_report
from embybridge.domain.errors import UnrecognizedReferenceError, UpstreamUnavailableError
from embybridge.infrastructure.providers.emby import EmbyCatalog, EmbySession
from embybridge.infrastructure.providers.ncm import NcmPlaylistClient


logger = logging.getLogger(__name__)

LOG_LEVELS = ['DEBUG', 'INFO', 'WARNING', 'ERROR']


class CLI:
    """Command Line Interface for Emby Bridge."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings
        self.parser = self._create_parser()
        self._start_time = None

    def _create_parser(self) -> argparse.ArgumentParser:
        """Create argument parser."""
        parser = argparse.ArgumentParser(
            prog='embybridge',
            description='Browse an Emby music library and import NetEase Cloud Music playlists into it'
        )
        subparsers = parser.add_subparsers(dest='command', help='Available commands')

        import_parser = subparsers.add_parser('import', help='Match an NCM playlist against the Emby library')
        import_parser.add_argument('reference', help='NCM playlist link or numeric ID')
        import_parser.add_argument(
            '--report-path',
            default='reports/',
            help='Directory for the JSON import report (default: reports/)'
        )
        import_parser.add_argument(
            '--concurrency',
            type=int,
            default=None,
            help='Catalog searches admitted per batch (default from env or 5)'
        )

        search_parser = subparsers.add_parser('search', help='Search the Emby library')
        search_parser.add_argument('query', help='Free-text query')
        search_parser.add_argument(
            '--type',
            choices=['music', 'album', 'artist', 'sheet'],
            default='music',
            help='What to search for (default: music)'
        )
        search_parser.add_argument('--page', type=int, default=1, help='Result page (default: 1)')

        stream_parser = subparsers.add_parser('stream-url', help='Print the stream URL of an Emby track')
        stream_parser.add_argument('track_id', help='Emby item ID')

        subparsers.add_parser('check', help='Validate configuration')

        for sub in (import_parser, search_parser, stream_parser):
            sub.add_argument(
                '--log-level',
                choices=LOG_LEVELS,
                default=None,
                help='Set logging level'
            )

        return parser

    def _setup_signal_handlers(self) -> None:
        """Setup signal handlers for graceful shutdown."""
        def signal_handler(signum, frame):
            logger.warning(f"Received signal {signum}, shutting down...")
            sys.exit(130)

        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)

    def _load_settings(self) -> Settings:
        if self.settings is None:
            self.settings = load_settings()
        return self.settings

    def _create_catalog(self) -> EmbyCatalog:
        settings = self._load_settings()
        settings.require_emby()
        session = EmbySession(settings.emby_url, settings.emby_username, settings.emby_password)
        return EmbyCatalog(session)

    def _create_pipeline(self, concurrency: Optional[int] = None) -> ImportPipeline:
        settings = self._load_settings()
        return ImportPipeline(
            source=NcmPlaylistClient(batch_size=settings.ncm_batch_size),
            catalog=self._create_catalog(),
            matcher=TrackMatcher(settings.duration_tolerance_seconds),
            concurrency=concurrency or settings.import_concurrency,
            match_limit=settings.match_limit,
        )

    def _import(self, args: argparse.Namespace) -> int:
        pipeline = self._create_pipeline(args.concurrency)
        try:
            run = pipeline.run(args.reference)
        except UnrecognizedReferenceError as e:
            logger.error(f"Unrecognized playlist reference: {e}")
            return 2
        except UpstreamUnavailableError as e:
            logger.error(f"NCM playlist unavailable: {e}")
            return 1

        report_file = save_report(create_report(run), args.report_path)
        logger.info(f"Report saved to: {report_file}")

        print(f"Matched {len(run.matches)}/{len(run.external_tracks)} tracks from playlist {run.playlist_id}")
        for match in run.matches:
            print(f"{match.local_id}: {match.title} - {match.artist} [{match.tier}]")
        return 0

    def _search(self, args: argparse.Namespace) -> int:
        catalog = self._create_catalog()
        if args.type == 'music':
            page = catalog.search_tracks(args.query, args.page)
            lines = [f"{t.local_id}: {t.title} - {t.artist} ({t.album})" for t in page.items]
        elif args.type == 'album':
            page = catalog.search_albums(args.query, args.page)
            lines = [f"{a.id}: {a.title} - {a.artist}" for a in page.items]
        elif args.type == 'artist':
            page = catalog.search_artists(args.query, args.page)
            lines = [f"{a.id}: {a.name}" for a in page.items]
        else:
            page = catalog.search_playlists(args.query, args.page)
            lines = [f"{p.id}: {p.title} ({p.description})" for p in page.items]

        for line in lines:
            print(line)
        if not page.is_end:
            print(f"-- more results on page {args.page + 1}")
        return 0

    def _stream_url(self, args: argparse.Namespace) -> int:
        print(self._create_catalog().stream_url(args.track_id))
        return 0

    def _check(self, args: argparse.Namespace) -> int:
        settings = self._load_settings()
        for key, ok in settings.validate().items():
            print(f"{key}: {'ok' if ok else 'MISSING'}")
        return 0 if all(settings.validate().values()) else 1

    def run(self, argv: Optional[List[str]] = None) -> int:
        """Run the CLI and return the exit code."""
        self._start_time = time.time()
        args = self.parser.parse_args(argv)

        if not args.command:
            self.parser.print_help()
            return 1

        try:
            settings = self._load_settings()
            setup_logging(getattr(args, 'log_level', None) or settings.log_level, settings.log_file)

            if args.command == 'import':
                return self._import(args)
            if args.command == 'search':
                return self._search(args)
            if args.command == 'stream-url':
                return self._stream_url(args)
            if args.command == 'check':
                return self._check(args)

            self.parser.print_help()
            return 1
        except ConfigError as e:
            logger.error(f"Configuration error: {e}")
            return 1
        except KeyboardInterrupt:
            logger.warning("Operation cancelled by user")
            return 130
        except Exception as e:
            logger.error(f"CLI error: {e}")
            return 1
        finally:
            logger.debug(f"CLI execution time: {time.time() - self._start_time:.2f}s")


def main():
    """Main entry point."""
    cli = CLI()
    cli._setup_signal_handlers()
    sys.exit(cli.run())


if __name__ == '__main__':
    main()
