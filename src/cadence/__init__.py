"""Cadence: durable job scheduling and in-process cron timers."""

__version__ = "0.1.0"
