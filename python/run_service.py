#!/usr/bin/env python3
"""
Launch the interview continuity service.
"""

from __future__ import annotations

import argparse
import os
from pathlib import Path

import uvicorn


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Run the local interview continuity service.",
    )
    parser.add_argument("--host", default="127.0.0.1", help="Service bind host.")
    parser.add_argument("--port", type=int, default=8790, help="Service bind port.")
    parser.add_argument(
        "--storage-dir",
        default=None,
        help="Durable storage directory. Default: ./storage next to the service.",
    )
    parser.add_argument(
        "--autosave-interval-ms",
        type=int,
        default=None,
        help="Default auto-save interval in milliseconds (default: 30000).",
    )
    parser.add_argument(
        "--quota-bytes",
        type=int,
        default=None,
        help="Optional storage capacity limit per store, in bytes.",
    )
    parser.add_argument("--log-level", default="info", help="Uvicorn log level.")
    return parser.parse_args()


def main() -> None:
    args = parse_args()

    os.environ["CONTINUITY_HOST"] = args.host
    os.environ["CONTINUITY_PORT"] = str(args.port)
    os.environ["CONTINUITY_LOG_LEVEL"] = args.log_level
    if args.storage_dir:
        os.environ["CONTINUITY_STORAGE_DIR"] = str(Path(args.storage_dir).expanduser())
    if args.autosave_interval_ms is not None:
        os.environ["AUTOSAVE_INTERVAL_MS"] = str(args.autosave_interval_ms)
    if args.quota_bytes is not None:
        os.environ["STORAGE_QUOTA_BYTES"] = str(args.quota_bytes)

    from continuity_service import RUNTIME_CONFIG, app  # Import after env config

    print(
        f"Starting continuity service bind=http://{args.host}:{args.port} "
        f"storage_dir={RUNTIME_CONFIG.storage_dir} "
        f"autosave_interval_ms={RUNTIME_CONFIG.autosave_interval_ms}"
    )
    uvicorn.run(app, host=args.host, port=args.port, log_level=args.log_level)


if __name__ == "__main__":
    main()
