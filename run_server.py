#!/usr/bin/env python3
"""
WeSpark Certificate Service Runner
==================================

Usage:
    python run_server.py                # Run with default settings
    python run_server.py --debug        # Run in debug mode
    python run_server.py --port 8000    # Run on custom port

Environment Variables:
    PORT         - Server port (default: 5000)
    FLASK_DEBUG  - Enable debug mode (default: False)
    DATABASE_URL - Use the relational store instead of in-memory storage

See app.load_config_from_env for the remaining settings.
"""

import os
import sys
import argparse

from app import create_app
from utils import env_flag


def build_parser():
    parser = argparse.ArgumentParser(description='Run the WeSpark certificate service')
    parser.add_argument('--port', type=int, default=None, help='Port to run on')
    parser.add_argument('--debug', action='store_true', help='Enable debug mode')
    parser.add_argument('--host', default='0.0.0.0', help='Host to bind to')
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)
    port = args.port or int(os.environ.get('PORT', 5000))
    debug = args.debug or env_flag(os.environ.get('FLASK_DEBUG'))

    try:
        app = create_app()
    except Exception as e:
        print(f"❌ Failed to create app: {e}")
        sys.exit(1)

    storage = type(app.extensions['certificate_storage']).__name__
    secondary = type(app.extensions['secondary_store']).__name__
    print("=" * 60)
    print("🚀 WESPARK CERTIFICATE SERVICE")
    print("=" * 60)
    print(f"🌐 Server: http://{args.host}:{port}")
    print(f"🔧 Debug Mode: {debug}")
    print(f"🗄️  Storage: {storage} / {secondary}")
    print("=" * 60)

    try:
        # Each request runs on its own thread
        app.run(host=args.host, port=port, debug=debug, threaded=True, use_reloader=debug)
    except KeyboardInterrupt:
        print("\n👋 Server stopped by user")


if __name__ == '__main__':
    main()
