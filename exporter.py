import logging
import signal
import sys

from dotenv import load_dotenv
from flask import Flask, Response
from prometheus_client import CONTENT_TYPE_LATEST

from gitlab_tokens_exporter.collector import Collector, Status
from gitlab_tokens_exporter.config import load_config
from gitlab_tokens_exporter.errors import ConfigError
from gitlab_tokens_exporter.scheduler import Scheduler

logger = logging.getLogger("gitlab_tokens_exporter")

LOG_FORMAT = "%(asctime)s %(levelname)s %(threadName)s %(name)s: %(message)s"


# ─── Flask App for Exporter ───
def create_app(collector):
    app = Flask(__name__)

    @app.route("/")
    def root():
        return "I'm Alive :D"

    @app.route("/metrics")
    def metrics():
        state = collector.get_state()
        if state.status is Status.LOADED:
            return Response(state.body, status=200, content_type=CONTENT_TYPE_LATEST)
        if state.status is Status.ERROR:
            return Response(state.body, status=500, mimetype="text/plain")
        # Still loading, or no token at all
        return Response(status=204)

    return app


# ─── Process ───
def configure_logging(level="INFO"):
    logging.basicConfig(level=level, format=LOG_FORMAT)
    # One line per request is more than we want at INFO
    logging.getLogger("werkzeug").setLevel(logging.WARNING)


def _terminate(signum, frame):
    raise SystemExit(f"Received signal {signal.Signals(signum).name}! exiting.")


def main():
    load_dotenv()
    try:
        config = load_config()
    except ConfigError as e:
        configure_logging()
        logger.error("%s", e)
        return 1
    configure_logging(config.log_level)

    collector = Collector(config)
    scheduler = Scheduler(collector, config.data_refresh_hours)
    app = create_app(collector)

    signal.signal(signal.SIGTERM, _terminate)
    scheduler.start()
    logger.info("listening on 0.0.0.0:%s", config.listen_port)
    try:
        app.run(host="0.0.0.0", port=config.listen_port)
    except SystemExit as e:
        logger.info("%s", e)
    finally:
        scheduler.stop(timeout=1)
        collector.client.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
