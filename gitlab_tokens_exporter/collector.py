"""Owns the state served on `/metrics` and runs the collection cycles."""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass
from enum import Enum

from gitlab_tokens_exporter import metrics
from gitlab_tokens_exporter.gitlab import GitlabClient
from gitlab_tokens_exporter.models import EntityKind
from gitlab_tokens_exporter.path_cache import PathCache
from gitlab_tokens_exporter.tokens import scan_domain

logger = logging.getLogger(__name__)

# Scan order, also used to pick the reported error when several domains fail
DOMAINS = (EntityKind.PROJECT, EntityKind.GROUP, EntityKind.USER)


class Status(Enum):
    LOADING = "loading"
    LOADED = "loaded"
    NO_TOKEN = "no_token"
    ERROR = "error"


@dataclass(frozen=True)
class PublishedState:
    status: Status
    body: str = ""

    @classmethod
    def loading(cls):
        return cls(Status.LOADING)

    @classmethod
    def loaded(cls, document):
        return cls(Status.LOADED, document)

    @classmethod
    def no_token(cls):
        return cls(Status.NO_TOKEN)

    @classmethod
    def error(cls, cause):
        return cls(Status.ERROR, cause)


class Collector:
    """Collects GitLab tokens, one cycle at a time.

    Readers call `get_state()` from any thread: the state is a frozen value
    replaced by a single assignment, so they see either the previous or the
    new one, never a partial document. Only one cycle runs at a time; a
    trigger arriving during a cycle is dropped.
    """

    def __init__(self, config, client=None):
        self.config = config
        self.client = client or GitlabClient.from_config(config)
        self._state = PublishedState.loading()
        self._running = threading.Lock()

    def get_state(self):
        return self._state

    @property
    def busy(self):
        return self._running.locked()

    def domains(self):
        if self.config.skip_users_tokens:
            return DOMAINS[:2]
        return DOMAINS

    def trigger(self):
        """Starts a cycle in the background unless one is already running."""
        if self.busy:
            logger.info("A collection is already running, skipping this trigger")
            return False
        threading.Thread(target=self.run_cycle, name="collection-cycle", daemon=True).start()
        return True

    def run_cycle(self):
        if not self._running.acquire(blocking=False):
            logger.info("A collection is already running, skipping this trigger")
            return False
        try:
            logger.info("Updating tokens data...")
            started = time.monotonic()
            self._state = PublishedState.loading()
            try:
                self._state = self.collect()
            except Exception as e:
                logger.exception("Collection failed")
                self._state = PublishedState.error(f"Collection failed: {e}")
            logger.info(
                "Tokens data updated (%s) in %.1fs", self._state.status.value, time.monotonic() - started
            )
            return True
        finally:
            self._running.release()

    def collect(self):
        """Runs the three domain scans and returns the state to publish."""
        cache = PathCache()
        domains = self.domains()
        max_workers = self.client.max_concurrent_requests

        with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="tokens") as fetchers:
            with ThreadPoolExecutor(max_workers=len(DOMAINS), thread_name_prefix="scan") as scanners:
                futures = {
                    kind: scanners.submit(
                        scan_domain, self.client, kind, cache, fetchers, self.config.owned_entities_only
                    )
                    for kind in domains
                }
                wait(futures.values())

        tokens = []
        for kind in domains:
            error = futures[kind].exception()
            if error is not None:
                msg = f"Failed to get {kind.value} tokens: {error}"
                logger.error(msg)
                return PublishedState.error(msg)
            tokens.extend(futures[kind].result())

        if not tokens:
            logger.warning("No token has been found")
            return PublishedState.no_token()

        logger.debug("%d paths resolved", len(cache))
        document = metrics.build(tokens, skip_non_expiring=self.config.skip_non_expiring_tokens)
        if not document:
            # Every token has been filtered out
            logger.warning("No token has been found")
            return PublishedState.no_token()
        return PublishedState.loaded(document)
