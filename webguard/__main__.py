"""진입점: python -m webguard"""

from __future__ import annotations

import argparse
import asyncio


def main() -> None:
    """WebGuard CLI 진입점. 설정을 로드하고 애플리케이션을 실행한다."""
    parser = argparse.ArgumentParser(
        prog="webguard",
        description="WebGuard - Security Monitoring & Threat Detection",
    )
    parser.add_argument(
        "-c", "--config",
        default=None,
        help="Path to configuration YAML file (default: config/default.yaml)",
    )
    args = parser.parse_args()

    from webguard.app import WebGuard
    from webguard.utils.config import Config

    config = Config.load(args.config)
    app = WebGuard(config)

    try:
        asyncio.run(app.run())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
