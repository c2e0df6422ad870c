#!/usr/bin/env python3
"""
Emby Bridge HTTP Server Runner
"""

import os

from embybridge.crosscutting.config import load_settings
from embybridge.crosscutting.logging import setup_logging
from embybridge.interfaces.http import HTTPServer


def main():
    """Run the HTTP server."""
    settings = load_settings()
    setup_logging(settings.log_level, settings.log_file)
    server = HTTPServer(
        settings=settings,
        host=os.getenv('EMBYBRIDGE_HTTP_HOST', 'localhost'),
        port=int(os.getenv('EMBYBRIDGE_HTTP_PORT', '3000')),
        debug=False
    )
    server.run()


if __name__ == '__main__':
    main()
