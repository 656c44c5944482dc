#!/usr/bin/env python3

import os
import sys
from bastion import create_app
from bastion.config import Config

if __name__ == "__main__":
    config = Config()
    app = create_app(config)

    host = os.environ.get("HOST", "127.0.0.1")
    port = int(os.environ.get("PORT", 5000))
    debug = os.environ.get("FLASK_ENV") == "development"

    print(f"Starting bastion on http://{host}:{port}")
    if config.ARTIFACT_DIR:
        print(f"Serving artifacts from {config.ARTIFACT_DIR}")
    print("Press CTRL+C to stop the server")

    try:
        app.run(host=host, port=port, debug=debug)
    except KeyboardInterrupt:
        print("\nShutting down bastion...")
        sys.exit(0)
