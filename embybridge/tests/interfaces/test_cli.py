import argparse
import os
import tempfile
from unittest.mock import Mock, patch

from embybridge.application.pipeline import ImportRun, MatchOutcome, RunStage
from embybridge.crosscutting.config import ConfigError, Settings
from embybridge.domain.entities import (
    Album, Artist, ExternalTrack, LocalCandidate, MatchResult, PlaylistSummary, SearchPage,
)
from embybridge.domain.errors import UnrecognizedReferenceError, UpstreamUnavailableError
from embybridge.interfaces.cli import CLI


FULL_SETTINGS = dict(emby_url='http://emby:8096', emby_username='alice', emby_password='secret')


def _run_with_match() -> ImportRun:
    track = ExternalTrack("9", "Song", "Singer", duration_seconds=200)
    match = MatchResult(
        local_id="a1", title="Song", artist="Singer", album="Record",
        artwork_url=None, duration_seconds=200, external_id="9", tier="perfect",
    )
    run = ImportRun(reference="9", run_id="run-cli")
    run.playlist_id = "9"
    run.stage = RunStage.DONE
    run.external_tracks = [track]
    run.outcomes = [MatchOutcome(track=track, match=match)]
    run.matches = [match]
    return run


@patch('embybridge.interfaces.cli.setup_logging')
class TestCLI:
    """Tests for CLI functionality."""

    def setup_method(self):
        """Set up test fixtures."""
        self.cli = CLI(Settings(**FULL_SETTINGS))

    def test_create_parser(self, mock_logging):
        parser = self.cli._create_parser()

        assert isinstance(parser, argparse.ArgumentParser)

        args = parser.parse_args(['import', 'https://music.163.com/playlist?id=9', '--concurrency', '3'])
        assert args.command == 'import'
        assert args.reference == 'https://music.163.com/playlist?id=9'
        assert args.concurrency == 3
        assert args.report_path == 'reports/'

        args = parser.parse_args(['search', 'song', '--type', 'album', '--page', '2'])
        assert args.command == 'search'
        assert args.type == 'album'
        assert args.page == 2

        args = parser.parse_args(['stream-url', 'a1', '--log-level', 'DEBUG'])
        assert args.track_id == 'a1'
        assert args.log_level == 'DEBUG'

    def test_no_command_prints_help(self, mock_logging, capsys):
        assert self.cli.run([]) == 1
        assert 'usage' in capsys.readouterr().out

    def test_check_complete(self, mock_logging, capsys):
        assert self.cli.run(['check']) == 0
        out = capsys.readouterr().out
        assert 'emby_url: ok' in out
        assert 'emby_password: ok' in out

    def test_check_missing(self, mock_logging, capsys):
        cli = CLI(Settings(emby_url='http://emby:8096'))

        assert cli.run(['check']) == 1
        assert 'emby_username: MISSING' in capsys.readouterr().out

    def test_log_level_flag_overrides_settings(self, mock_logging):
        with patch.object(self.cli, '_create_catalog') as mock_catalog:
            mock_catalog.return_value.stream_url.return_value = 'http://emby/stream'
            self.cli.run(['stream-url', 'a1', '--log-level', 'DEBUG'])

        mock_logging.assert_called_once_with('DEBUG', None)

    def test_missing_credentials_returns_error(self, mock_logging):
        cli = CLI(Settings())

        assert cli.run(['stream-url', 'a1']) == 1

    def test_config_error_from_loading(self, mock_logging):
        cli = CLI()
        with patch('embybridge.interfaces.cli.load_settings', side_effect=ConfigError('bad')):
            assert cli.run(['check']) == 1

    def test_create_pipeline_uses_settings(self, mock_logging):
        cli = CLI(Settings(import_concurrency=4, match_limit=8, ncm_batch_size=50, **FULL_SETTINGS))

        pipeline = cli._create_pipeline()
        assert pipeline.concurrency == 4
        assert pipeline.match_limit == 8
        assert pipeline.source.batch_size == 50

        assert cli._create_pipeline(2).concurrency == 2

    def test_import_success_writes_report(self, mock_logging, capsys):
        pipeline = Mock()
        pipeline.run.return_value = _run_with_match()

        with tempfile.TemporaryDirectory() as tmp, \
                patch.object(self.cli, '_create_pipeline', return_value=pipeline):
            code = self.cli.run(['import', '9', '--report-path', tmp])
            assert os.path.exists(os.path.join(tmp, 'import_report_run-cli.json'))

        assert code == 0
        out = capsys.readouterr().out
        assert 'Matched 1/1 tracks from playlist 9' in out
        assert 'a1: Song - Singer [perfect]' in out
        pipeline.run.assert_called_once_with('9')

    def test_import_unrecognized_reference(self, mock_logging):
        pipeline = Mock()
        pipeline.run.side_effect = UnrecognizedReferenceError('nope')

        with patch.object(self.cli, '_create_pipeline', return_value=pipeline):
            assert self.cli.run(['import', 'nope']) == 2

    def test_import_upstream_unavailable(self, mock_logging):
        pipeline = Mock()
        pipeline.run.side_effect = UpstreamUnavailableError('down')

        with patch.object(self.cli, '_create_pipeline', return_value=pipeline):
            assert self.cli.run(['import', '9']) == 1

    def test_search_each_type(self, mock_logging, capsys):
        catalog = Mock()
        catalog.search_tracks.return_value = SearchPage(False, [LocalCandidate("a1", "Song", "Singer", "Record")])
        catalog.search_albums.return_value = SearchPage(True, [Album("al1", "Record", "Band")])
        catalog.search_artists.return_value = SearchPage(True, [Artist("ar1", "Band")])
        catalog.search_playlists.return_value = SearchPage(True, [PlaylistSummary("p1", "Mix", description="Tracks: 3")])

        with patch.object(self.cli, '_create_catalog', return_value=catalog):
            for search_type in ('music', 'album', 'artist', 'sheet'):
                assert self.cli.run(['search', 'x', '--type', search_type]) == 0

        out = capsys.readouterr().out
        assert 'a1: Song - Singer (Record)' in out
        assert '-- more results on page 2' in out
        assert 'al1: Record - Band' in out
        assert 'ar1: Band' in out
        assert 'p1: Mix (Tracks: 3)' in out

    def test_unexpected_error_returns_one(self, mock_logging):
        catalog = Mock()
        catalog.stream_url.side_effect = RuntimeError('boom')

        with patch.object(self.cli, '_create_catalog', return_value=catalog):
            assert self.cli.run(['stream-url', 'a1']) == 1
