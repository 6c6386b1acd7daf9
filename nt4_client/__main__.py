"""
Entry point for `python -m nt4_client`.

Usage:
    python -m nt4_client [--server 127.0.0.1] [--port 5810] [--subscribe /SmartDashboard --prefix]
"""

import asyncio
import argparse
import logging
import signal
import sys

from .client import NT4Client
from .nt4_protocol import DEFAULT_APP_NAME, DEFAULT_PORT, NT4Value
from .topics import Topic

logger = logging.getLogger("NT4Client")


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="NT4 Client - value monitor")
    parser.add_argument("--server", "-s", default="127.0.0.1")
    parser.add_argument("--port", "-p", type=int, default=DEFAULT_PORT)
    parser.add_argument("--app-name", "-n", default=DEFAULT_APP_NAME)
    parser.add_argument("--subscribe", "-t", nargs="*", default=["/"],
                        help="Topic names (or prefixes with --prefix)")
    parser.add_argument("--prefix", action="store_true", help="Treat topics as prefixes")
    parser.add_argument("--periodic", type=float, default=0.1, help="Update period (s)")
    parser.add_argument("--verbose", "-v", action="store_true")
    return parser.parse_args(argv)


def log_value(topic: Topic, timestamp_us: int, value: NT4Value):
    logger.info(f"{topic.name} @ {timestamp_us / 1e6:.6f}s = {value.value!r}")


async def run():
    args = parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )

    print(f"Server:    {args.server}:{args.port}")
    print(f"Identity:  {args.app_name}")
    print(f"Subscribe: {', '.join(args.subscribe) or 'nothing'}\n")

    client = NT4Client(
        app_name=args.app_name,
        server_address=args.server,
        port=args.port,
        on_new_value=log_value,
    )

    shutdown = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, shutdown.set)

    try:
        if not await client.connect():
            print("Connection failed")
            return 1

        if args.subscribe:
            await client.subscribe(args.subscribe, periodic=args.periodic, prefix=args.prefix)
        print("Connected. Waiting for values...\n")

        async def stats_printer():
            while not shutdown.is_set():
                await asyncio.sleep(5.0)
                logger.info(f"Stats: {client.stats}")
                if not client.connected:
                    logger.error("Connection lost")
                    shutdown.set()

        task = asyncio.create_task(stats_printer())
        await shutdown.wait()
        task.cancel()
    finally:
        await client.disconnect()

    return 0


def main():
    try:
        sys.exit(asyncio.run(run()))
    except KeyboardInterrupt:
        sys.exit(0)


if __name__ == "__main__":
    main()
