"""Run the API with uvicorn: ``python -m clinicdesk``."""

from __future__ import annotations

import argparse

import uvicorn


def main(argv=None) -> None:
    parser = argparse.ArgumentParser(description="Run the ClinicDesk API server")
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=8000)
    parser.add_argument("--reload", action="store_true")
    args = parser.parse_args(argv)
    uvicorn.run("clinicdesk.main:create_app", factory=True, host=args.host, port=args.port, reload=args.reload)


if __name__ == "__main__":
    main()
