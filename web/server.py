#!/usr/bin/env python3
"""
Web server for Blood Bowl 3 replay coaching
Run: python server.py
Then POST a replay to http://localhost:8080/api/replay?name=match.bbr
"""

import os
import sys
import json
import time
import logging
import traceback
from http.server import HTTPServer, BaseHTTPRequestHandler
from urllib.parse import parse_qs, urlsplit

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from analyze_replay import analyze_replay_input
from config import AppConfig
from replay_decoder import ReplayValidationError

logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = ('.xml', '.bbr')


def has_allowed_extension(name):
    return name.lower().endswith(ALLOWED_EXTENSIONS)


class ReplayHandler(BaseHTTPRequestHandler):
    config = AppConfig()

    def do_GET(self):
        path = urlsplit(self.path).path
        if path == '/api/health':
            self.send_health()
        else:
            self.send_json({'error': 'Not found'}, 404)

    def do_POST(self):
        path = urlsplit(self.path).path
        if path == '/api/replay':
            self.handle_replay()
        else:
            self.send_json({'error': 'Not found'}, 404)

    def send_json(self, data, status=200):
        response = json.dumps(data, indent=2, default=str).encode()
        self.send_response(status)
        self.send_header('Content-Type', 'application/json')
        self.send_header('Content-Length', len(response))
        self.end_headers()
        self.wfile.write(response)

    def discard_body(self, length):
        """Read and drop a rejected upload so the client still gets the response"""
        while length > 0:
            chunk = self.rfile.read(min(length, 64 * 1024))
            if not chunk:
                break
            length -= len(chunk)

    def send_health(self):
        config = self.config
        self.send_json({
            'status': 'ok',
            'limits': {
                'max_replay_bytes': config.max_replay_bytes,
                'max_decoded_replay_chars': config.max_decoded_replay_chars,
                'max_analyze_duration_ms': config.max_analyze_duration_ms,
                'max_team_turns': config.max_team_turns,
            },
        })

    def handle_replay(self):
        """Analyze an uploaded replay sent as the raw request body"""
        config = self.config
        query = urlsplit(self.path).query
        name = parse_qs(query).get('name', [''])[0]

        try:
            content_length = int(self.headers.get('Content-Length', 0) or 0)
        except ValueError:
            self.send_json({'error': 'Invalid Content-Length header.'}, 400)
            return
        if content_length <= 0:
            self.send_json({'error': 'A replay file is required.'}, 400)
            return

        if not has_allowed_extension(name):
            self.discard_body(content_length)
            self.send_json({'error': 'Unsupported replay file type. Upload .xml or .bbr files.'}, 400)
            return

        if content_length > config.max_replay_bytes:
            self.discard_body(content_length)
            max_mb = config.max_replay_bytes // (1024 * 1024)
            self.send_json({'error': f'Replay file too large. Max size is {max_mb}MB.'}, 413)
            return

        replay_input = self.rfile.read(content_length).decode('utf-8-sig', errors='replace')
        if not replay_input.strip():
            self.send_json({'error': 'Replay file is empty.'}, 400)
            return

        try:
            started_at = time.monotonic()
            report = analyze_replay_input(
                replay_input,
                max_decoded_chars=config.max_decoded_replay_chars,
                config=config,
            )
            duration_ms = (time.monotonic() - started_at) * 1000
        except ReplayValidationError as e:
            self.send_json({'error': str(e)}, 400)
            return
        except Exception as e:
            print(f"\n{'='*60}")
            print(f"ERROR analyzing uploaded replay: {name}")
            print(f"{'='*60}")
            traceback.print_exc()
            print(f"{'='*60}\n")
            logger.error("Unexpected replay analysis error: %s", e)
            self.send_json({'error': 'Failed to analyze replay.'}, 500)
            return

        if duration_ms > config.max_analyze_duration_ms:
            logger.info(
                "Replay analysis exceeded duration budget: report=%s duration_ms=%d budget_ms=%d",
                report['id'], duration_ms, config.max_analyze_duration_ms,
            )
            self.send_json(
                {'error': 'Replay analysis took too long. Try a smaller replay or trim long overtime games.'},
                413,
            )
            return

        unknown_codes = report['replay']['unknown_codes']
        if unknown_codes:
            logger.info(
                "Replay contains unknown mapping codes: report=%s codes=%s",
                report['id'], unknown_codes[:10],
            )

        if not report['analysis']['findings']:
            logger.info(
                "Replay produced no coaching findings: report=%s turns=%d",
                report['id'], report['replay']['turn_count'],
            )

        self.send_json({'report': report})


def build_server(config=None, handler_class=ReplayHandler):
    """HTTPServer bound to the configured address, with handlers using config"""
    config = config or AppConfig.from_env()
    handler = type('ConfiguredReplayHandler', (handler_class,), {'config': config})
    return HTTPServer((config.host, config.port), handler)


def main():
    logging.basicConfig(level=logging.INFO, format='%(asctime)s %(levelname)s %(name)s: %(message)s')

    config = AppConfig.from_env()
    server = build_server(config)
    host, port = server.server_address[:2]
    print(f"Blood Bowl 3 replay coach running at http://{host}:{port}")
    print(f"Max upload: {config.max_replay_bytes:,} bytes, "
          f"analysis budget: {config.max_analyze_duration_ms}ms")
    print("Press Ctrl+C to stop")

    try:
        server.serve_forever()
    except KeyboardInterrupt:
        print("\nShutting down...")
        server.server_close()


if __name__ == '__main__':
    main()
