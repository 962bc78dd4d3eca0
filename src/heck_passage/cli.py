import argparse
import os
from typing import Any

import uvicorn

from .proxy_app import app
from .config import load_settings, ServiceCfg


def main() -> None:
    parser = argparse.ArgumentParser(prog="heck-passage", description="OpenAI-compatible proxy for the Heck chat API")
    parser.add_argument("--host", default="0.0.0.0")
    parser.add_argument("--port", type=int, default=None, help="overrides service.port and $PORT")
    args = parser.parse_args()

    try:
        cfg = load_settings()
    except Exception:
        cfg = None

    port = args.port or (cfg.service.port if cfg else ServiceCfg().port)

    kwargs: dict[str, Any] = {}
    certfile = os.getenv("HECK_PASSAGE_CERTFILE")
    keyfile = os.getenv("HECK_PASSAGE_KEYFILE")
    ca_certs = os.getenv("HECK_PASSAGE_CA_CERTS")
    if certfile:
        kwargs["ssl_certfile"] = certfile
    if keyfile:
        kwargs["ssl_keyfile"] = keyfile
    if ca_certs:
        kwargs["ssl_ca_certs"] = ca_certs

    uvicorn.run(app, host=args.host, port=port, **kwargs)
