import os
import logging
from dataclasses import asdict
from datetime import datetime
from typing import Callable, Optional

from flask import Flask, request, jsonify

from embybridge.application.matching import TrackMatcher
from embybridge.application.pipeline import ImportPipeline
from embybridge.crosscutting.config import Settings, load_settings
from embybridge.domain.entities import SearchPage
from embybridge.domain.errors import UnrecognizedReferenceError, UpstreamUnavailableError
from embybridge.infrastructure.providers.emby import EmbyCatalog, EmbySession
from embybridge.infrastructure.providers.ncm import NcmPlaylistClient


def _page_json(page: SearchPage) -> dict:
    return {'isEnd': page.is_end, 'data': [asdict(item) for item in page.items]}


class HTTPServer:
    """HTTP interface exposing the Emby catalog and NCM import to a host player."""

    def __init__(self,
                 catalog: Optional[EmbyCatalog] = None,
                 pipeline_factory: Optional[Callable[[], ImportPipeline]] = None,
                 settings: Optional[Settings] = None,
                 host: str = 'localhost',
                 port: int = 3000,
                 debug: bool = False):
        """Initialize HTTP server."""
        self.host = host
        self.port = port
        self.debug = debug
        self.app = Flask(__name__)
        self.logger = logging.getLogger(__name__)

        self.version = "1.0.0"
        self.commit = os.getenv('GIT_COMMIT', 'unknown')

        self.settings = settings or load_settings()
        self.catalog = catalog or EmbyCatalog(EmbySession(
            self.settings.emby_url, self.settings.emby_username, self.settings.emby_password
        ))
        self.pipeline_factory = pipeline_factory or self._default_pipeline

        self._setup_routes()

    def _default_pipeline(self) -> ImportPipeline:
        return ImportPipeline(
            source=NcmPlaylistClient(batch_size=self.settings.ncm_batch_size),
            catalog=self.catalog,
            matcher=TrackMatcher(self.settings.duration_tolerance_seconds),
            concurrency=self.settings.import_concurrency,
            match_limit=self.settings.match_limit,
        )

    def _page_arg(self) -> int:
        try:
            return max(1, int(request.args.get('page', 1)))
        except ValueError:
            return 1

    def _setup_routes(self) -> None:
        """Setup Flask routes."""

        @self.app.route('/health', methods=['GET'])
        def health_check():
            return jsonify({
                'status': 'healthy',
                'version': self.version,
                'commit': self.commit,
                'timestamp': datetime.now().isoformat()
            }), 200

        @self.app.route('/', methods=['GET'])
        def root():
            return jsonify({
                'service': 'Emby Bridge HTTP Interface',
                'version': self.version,
                'endpoints': {
                    'health': '/health',
                    'search': '/search?q=&type=music|album|artist|sheet&page=',
                    'playlists': '/playlists',
                    'album_tracks': '/albums/<id>/tracks',
                    'playlist_tracks': '/playlists/<id>/tracks',
                    'all_tracks': '/tracks',
                    'stream': '/tracks/<id>/stream',
                    'import': '/import'
                }
            }), 200

        @self.app.route('/search', methods=['GET'])
        def search():
            query = request.args.get('q', '')
            search_type = request.args.get('type', 'music')
            page = self._page_arg()
            searches = {
                'music': self.catalog.search_tracks,
                'album': self.catalog.search_albums,
                'artist': self.catalog.search_artists,
                'sheet': self.catalog.search_playlists,
            }
            if search_type not in searches:
                self.logger.warning(f"Unsupported search type {search_type!r}")
                return jsonify(_page_json(SearchPage.empty())), 200
            try:
                return jsonify(_page_json(searches[search_type](query, page))), 200
            except Exception as e:
                self.logger.error(f"Search failed: {e}")
                return jsonify(_page_json(SearchPage.empty())), 200

        @self.app.route('/albums/<album_id>/tracks', methods=['GET'])
        def album_tracks(album_id):
            try:
                tracks = self.catalog.album_tracks(album_id)
            except Exception as e:
                self.logger.error(f"Album lookup failed for {album_id}: {e}")
                tracks = []
            return jsonify({'isEnd': True, 'musicList': [asdict(t) for t in tracks]}), 200

        @self.app.route('/playlists', methods=['GET'])
        def playlists():
            try:
                page = self.catalog.list_playlists(self._page_arg())
            except Exception as e:
                self.logger.error(f"Listing playlists failed: {e}")
                page = SearchPage.empty()
            return jsonify(_page_json(page)), 200

        @self.app.route('/playlists/<playlist_id>/tracks', methods=['GET'])
        def playlist_tracks(playlist_id):
            try:
                page = self.catalog.playlist_tracks(playlist_id, self._page_arg())
            except Exception as e:
                self.logger.error(f"Playlist lookup failed for {playlist_id}: {e}")
                page = SearchPage.empty()
            return jsonify({'isEnd': page.is_end, 'musicList': [asdict(t) for t in page.items]}), 200

        @self.app.route('/tracks', methods=['GET'])
        def all_tracks():
            try:
                page = self.catalog.all_tracks(self._page_arg())
            except Exception as e:
                self.logger.error(f"Listing tracks failed: {e}")
                page = SearchPage.empty()
            return jsonify({'isEnd': page.is_end, 'musicList': [asdict(t) for t in page.items]}), 200

        @self.app.route('/tracks/<track_id>/stream', methods=['GET'])
        def stream(track_id):
            try:
                return jsonify({'url': self.catalog.stream_url(track_id)}), 200
            except Exception as e:
                self.logger.error(f"Stream URL failed for {track_id}: {e}")
                return jsonify({'error': 'Stream unavailable', 'details': str(e)}), 502

        @self.app.route('/import', methods=['POST'])
        def import_playlist():
            payload = request.get_json(silent=True)
            if payload is None:
                payload = {}
            if not isinstance(payload, dict):
                return jsonify({'error': 'Request body must be a JSON object'}), 400
            reference = payload.get('reference')
            if not reference:
                return jsonify({'error': 'Missing playlist reference'}), 400

            try:
                matches = self.pipeline_factory().import_playlist(reference)
            except UnrecognizedReferenceError as e:
                return jsonify({'error': 'Unrecognized playlist reference', 'details': str(e)}), 400
            except UpstreamUnavailableError as e:
                return jsonify({'error': 'Playlist source unavailable', 'details': str(e)}), 502
            except Exception as e:
                self.logger.error(f"Import failed: {e}")
                return jsonify({'error': 'Internal server error', 'details': str(e)}), 500

            return jsonify({'count': len(matches), 'musicList': [m.to_json() for m in matches]}), 200

    def run(self) -> None:
        """Run the HTTP server."""
        self.logger.info(f"Starting Emby Bridge HTTP server on {self.host}:{self.port}")
        self.app.run(host=self.host, port=self.port, debug=self.debug)


def create_app() -> Flask:
    """Create Flask app from environment settings."""
    server = HTTPServer()
    return server.app


if __name__ == '__main__':
    HTTPServer().run()
