"""Renders tokens as Prometheus gauges.

Metric names always start with `gitlab_token_`. One gauge per token, its value
being the number of days left before the token expires (negative once it has
expired, `+Inf` for tokens that never expire). prometheus_client renders gauge
values as floats, so 31 days left reads `31.0`.
"""

import logging
import math
import re
from datetime import datetime, timezone

from prometheus_client import CollectorRegistry, generate_latest
from prometheus_client.core import GaugeMetricFamily

logger = logging.getLogger(__name__)

METRIC_PREFIX = "gitlab_token_"
METRIC_HELP = "Gitlab token"

# cf https://prometheus.io/docs/concepts/data_model/ for authorized characters
INVALID_METRIC_CHARS_RE = re.compile(r"[^a-zA-Z0-9_:]")

# Same label set for every token kind: one family may mix kinds once names are normalized
LABELS = [
    "token_id",
    "token_type",
    "full_path",
    "token_name",
    "active",
    "revoked",
    "scopes",
    "access_level",
    "expires_at",
    "web_url",
]


def normalize(name):
    """Replaces every unauthorized character with `_`, keeping the length."""
    return INVALID_METRIC_CHARS_RE.sub("_", name)


def metric_name(token):
    return normalize(f"{METRIC_PREFIX}{token.path}_{token.name}")


def format_scopes(scopes):
    # Label values cannot hold double quotes
    return "[" + ",".join(scope.replace('"', "") for scope in scopes) + "]"


def label_values(token):
    return [
        str(token.id),
        token.kind.value,
        token.path,
        token.name,
        str(token.active).lower(),
        str(token.revoked).lower(),
        format_scopes(token.scopes),
        # Personal access tokens have no access level
        str(token.access_level) if token.access_level is not None else "",
        token.expires_at.isoformat() if token.expires_at is not None else "never",
        token.web_url,
    ]


class TokenCollector:
    """Custom collector yielding one gauge family per metric name."""

    def __init__(self, tokens, today, skip_non_expiring=False):
        self.tokens = tokens
        self.today = today
        self.skip_non_expiring = skip_non_expiring

    def samples(self):
        samples = []
        for token in self.tokens:
            try:
                if token.expires_at is None:
                    if self.skip_non_expiring:
                        logger.debug("Skipping non-expiring token %s of %s", token.name, token.path)
                        continue
                    value = math.inf
                else:
                    value = float(token.days_left(self.today))
                samples.append((metric_name(token), token.kind.value, token.id, label_values(token), value))
            except (AttributeError, TypeError, ValueError) as e:
                logger.warning("Skipping token %r: %s", token, e)
        samples.sort(key=lambda sample: sample[:3])
        return samples

    def collect(self):
        families = {}
        for name, _, _, labels, value in self.samples():
            family = families.get(name)
            if family is None:
                family = GaugeMetricFamily(name, METRIC_HELP, labels=LABELS)
                families[name] = family
            family.add_metric(labels, value)
        return list(families.values())


def build(tokens, skip_non_expiring=False, today=None):
    """Returns the metrics document for `tokens`. Never raises for a bad token."""
    if today is None:
        today = datetime.now(timezone.utc).date()
    registry = CollectorRegistry()
    registry.register(TokenCollector(tokens, today, skip_non_expiring))
    return generate_latest(registry).decode("utf-8")
