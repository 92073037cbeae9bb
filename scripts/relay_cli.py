#!/usr/bin/env python3
from __future__ import annotations

import argparse
import json
import sys
from dataclasses import replace

from backend.app.config import RelayConfig, Settings
from backend.app.errors import RelayError
from backend.app.logging_config import setup_logging
from backend.app.relay import TryOnRelay


def build_config(args) -> RelayConfig:
    cfg = RelayConfig.from_settings(Settings(args.config) if args.config else None)
    overrides = {}
    if args.max_wait is not None:
        overrides["max_wait"] = args.max_wait
    if args.endpoint:
        overrides["endpoint"] = args.endpoint.rstrip("/")
    if overrides:
        cfg = replace(cfg, **overrides)
    return cfg


def main(argv=None) -> int:
    ap = argparse.ArgumentParser(description="Run one virtual try-on through the prediction service")
    ap.add_argument("--user", required=True, help="URL of the subject photo")
    ap.add_argument("--garment", required=True, help="URL of the garment image")
    ap.add_argument("--config", default=None, help="YAML config (default: $FITROOM_CONFIG)")
    ap.add_argument("--endpoint", default=None, help="override the predictions endpoint")
    ap.add_argument("--max-wait", type=float, default=None, help="polling budget in seconds")
    args = ap.parse_args(argv)

    setup_logging()
    relay = TryOnRelay.from_config(build_config(args))
    try:
        result = relay.relay(args.user, args.garment)
    except RelayError as e:
        print(json.dumps(e.to_dict()), file=sys.stderr)
        return 1
    print(json.dumps(result.to_dict()))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
