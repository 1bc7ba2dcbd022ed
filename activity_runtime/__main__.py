"""
Activity runtime - エントリポイント

設定を読み込み、ContainerManager と boot status プロキシを有効化して
診断 API を起動する。--headless では API を起動せずシグナルを待つ。
"""

import argparse
import atexit
import signal
import sys
import threading

from .config import load_config
from .errors import ActivityManagerError
from .logging_utils import configure_logging, get_structured_logger
from .runtime import initialize_runtime


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Activity manager runtime")
    parser.add_argument("--config", help="YAML configuration file")
    parser.add_argument("--headless", action="store_true", help="Run without the HTTP API")
    args = parser.parse_args(argv)

    try:
        config = load_config(args.config)
    except ActivityManagerError as exc:
        print(f"[activitymanager] {exc}", file=sys.stderr)
        return 2

    configure_logging(config.log_level, config.log_format, config.log_output)
    logger = get_structured_logger("activitymanager.runtime")

    runtime = initialize_runtime(config)
    atexit.register(runtime.shutdown)
    runtime.enable()
    logger.info("Activity runtime started", config=config.to_dict())

    if args.headless:
        _wait_for_signal()
        return 0

    from .api import create_app
    create_app(runtime).run(host=config.api_host, port=config.api_port)
    return 0


def _wait_for_signal() -> None:
    stopped = threading.Event()
    signal.signal(signal.SIGTERM, lambda *_: stopped.set())
    try:
        stopped.wait()
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    sys.exit(main())
