"""Main entry point for the Datadog firehose nozzle."""
import argparse
import logging
import sys
import threading
import signal

from datadog_nozzle.config import load_config
from datadog_nozzle.client import DatadogClient
from datadog_nozzle.control_api import ControlAPI
from datadog_nozzle.nozzle import Nozzle, run_nozzle_thread
from datadog_nozzle.self_metrics import start_self_metrics_server
from datadog_nozzle.sources import create_source


def setup_logging(log_level: str, log_format: str):
    """Setup logging configuration."""
    level = getattr(logging, log_level.upper(), logging.INFO)

    if log_format == "json":
        fmt = '{"time": "%(asctime)s", "level": "%(levelname)s", "logger": "%(name)s", "message": "%(message)s"}'
    else:
        fmt = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"

    logging.basicConfig(
        level=level,
        format=fmt,
        datefmt="%Y-%m-%d %H:%M:%S"
    )

    # Reduce noise from some libraries
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def main():
    """Main function."""
    parser = argparse.ArgumentParser(
        description="Datadog Firehose Nozzle - aggregate firehose metrics and post them to Datadog"
    )
    parser.add_argument(
        "--config",
        "-c",
        required=True,
        help="Path to configuration YAML file"
    )

    args = parser.parse_args()

    # Load configuration
    try:
        config = load_config(args.config)
    except Exception as e:
        print(f"Error loading configuration: {e}", file=sys.stderr)
        sys.exit(1)

    setup_logging(config.global_.log_level, config.global_.log_format)
    logger = logging.getLogger(__name__)

    logger.info(f"Configuration loaded from: {args.config}")
    logger.info(f"Flush interval: {config.nozzle.flush_interval_s}s")
    logger.info(f"Source: {config.source.type}")

    try:
        self_metrics = None
        if config.self_metrics.prometheus.enabled:
            self_metrics = start_self_metrics_server(config.self_metrics.prometheus)

        client = DatadogClient.from_config(config, self_metrics=self_metrics)
        nozzle = Nozzle(config, client, create_source(config.source))
    except Exception as e:
        logger.error(f"Failed to initialize nozzle: {e}", exc_info=True)
        sys.exit(1)

    control_api = ControlAPI(nozzle)

    nozzle_thread = threading.Thread(
        target=run_nozzle_thread,
        args=(nozzle,),
        daemon=True
    )
    nozzle_thread.start()
    logger.info("Nozzle started")

    def signal_handler(signum, frame):
        logger.info(f"Received signal {signum}, shutting down...")
        nozzle.stop()
        sys.exit(0)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    # Run control API (blocking)
    logger.info(f"Starting control API on port {config.global_.control_api_port}")
    try:
        control_api.run(
            host="0.0.0.0",
            port=config.global_.control_api_port
        )
    except Exception as e:
        logger.error(f"Control API error: {e}", exc_info=True)
        nozzle.stop()
        sys.exit(1)


if __name__ == "__main__":
    main()
