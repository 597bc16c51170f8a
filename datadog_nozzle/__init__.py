"""Firehose nozzle that aggregates metrics and posts them to Datadog."""

__version__ = "0.1.0"
