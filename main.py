# Author: Omi Shrestha

"""
Heart rate monitor entry point.

    python main.py EE:74:7D:C9:2A:68

Scans for the given peripheral, subscribes to Heart Rate Measurement
notifications and reconnects whenever the stream goes quiet.
"""

import argparse
import asyncio
import logging
import sys

from config import MonitorConfig
from errors import MonitorError
from supervisor import HeartRateMonitor

logger = logging.getLogger("main")


def build_parser():
    parser = argparse.ArgumentParser(
        prog="heartrate-monitor",
        description="Keep a BLE heart rate peripheral subscribed, reconnecting on stale data.",
    )
    parser.add_argument("address", help="hardware address of the peripheral (compared exactly)")
    parser.add_argument("--window", type=float, dest="stale_window",
                        help="seconds without notifications before a check is overdue (default 3)")
    parser.add_argument("--threshold", type=int, dest="reconnect_threshold",
                        help="reconnect once consecutive overdue checks exceed this (default 2)")
    parser.add_argument("--scan-timeout", type=float, dest="scan_timeout",
                        help="give up a scan after this many seconds, 0 scans forever (default 30)")
    parser.add_argument("--attempts", type=int, dest="connect_attempts",
                        help="setup attempts before a connect failure is fatal (default 5)")
    parser.add_argument("--adapter", help="HCI adapter to use, e.g. hci1")
    parser.add_argument("--log-file", dest="event_log",
                        help="append-only event log (default bluetooth.log)")
    parser.add_argument("-v", "--verbose", action="store_true", help="debug output")
    return parser


def config_from_args(args):
    return MonitorConfig.from_env(
        address=args.address,
        stale_window=args.stale_window,
        reconnect_threshold=args.reconnect_threshold,
        scan_timeout=args.scan_timeout,
        connect_attempts=args.connect_attempts,
        adapter=args.adapter,
        event_log=args.event_log,
    ).validate()


def setup_logging(verbose=False):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)-7s %(message)s",
        datefmt="%H:%M:%S",
    )
    # bleak is chatty at debug level
    logging.getLogger("bleak").setLevel(logging.INFO)


async def monitor(config):
    hrm = HeartRateMonitor(config)
    try:
        await hrm.run()
    finally:
        hrm.sink.close()


def main(argv=None):
    args = build_parser().parse_args(argv)
    setup_logging(args.verbose)

    try:
        config = config_from_args(args)
        asyncio.run(monitor(config))
    except KeyboardInterrupt:
        print("\nExiting...")
        return 130
    except MonitorError as e:
        logger.error("%s: %s", type(e).__name__, e)
        return e.exit_code
    return 0


if __name__ == "__main__":
    sys.exit(main())
