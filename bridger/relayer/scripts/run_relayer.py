#!/usr/bin/env python3
"""Entry point for schedulers (cron, systemd timers) running one relayer pass."""

from relayer.cli.main import run


if __name__ == "__main__":
    run()
