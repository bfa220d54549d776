"""GitLab REST API access: one session, one global request limiter, Link-header pagination.

cf https://docs.gitlab.com/api/rest/#offset-based-pagination
"""

import logging
import re
import threading

import requests
import urllib3

from gitlab_tokens_exporter.errors import GitlabApiError
from gitlab_tokens_exporter.models import AccessLevel, EntityKind, entity_from_json

logger = logging.getLogger(__name__)

PER_PAGE = 100

# Bot users created by GitLab for project and group access tokens
BOT_USERNAME_RE = re.compile(r"(project|group)_[0-9]+_bot_[0-9a-f]{32,}")

ENTITY_LIST_PATHS = {
    EntityKind.PROJECT: "projects",
    EntityKind.GROUP: "groups",
    EntityKind.USER: "users",
}


class GitlabClient:
    """Thin wrapper around a `requests.Session` talking to one GitLab instance.

    Every request goes through `get()`, which holds a slot of a bounded
    semaphore for the duration of the HTTP call: no more than
    `max_concurrent_requests` calls are ever in flight, whatever thread
    issues them.
    """

    def __init__(
        self,
        hostname,
        token,
        max_concurrent_requests=10,
        accept_invalid_certs=False,
        timeout=30,
        session=None,
    ):
        self.base_url = f"https://{hostname}/api/v4"
        self.timeout = timeout
        self.max_concurrent_requests = max_concurrent_requests
        self.session = session or requests.Session()
        self.session.headers.update({"PRIVATE-TOKEN": token})
        if accept_invalid_certs:
            self.session.verify = False
            urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)
        self._limiter = threading.BoundedSemaphore(max_concurrent_requests)

    @classmethod
    def from_config(cls, config):
        return cls(
            config.hostname,
            config.token,
            max_concurrent_requests=config.max_concurrent_requests,
            accept_invalid_certs=config.accept_invalid_certs,
            timeout=config.request_timeout,
        )

    def close(self):
        self.session.close()

    def url(self, path):
        return f"{self.base_url}/{path.lstrip('/')}"

    def get(self, url, params=None):
        logger.debug("GET %s %s", url, params or "")
        with self._limiter:
            try:
                response = self.session.get(url, params=params, timeout=self.timeout)
            except requests.exceptions.RequestException as e:
                raise GitlabApiError(url, str(e)) from e
        if not response.ok:
            logger.error("%s - %s : %s", url, response.status_code, response.text)
            raise GitlabApiError(url, response.reason or response.text, status=response.status_code)
        return response

    @staticmethod
    def decode(response, url):
        try:
            return response.json()
        except ValueError as e:
            raise GitlabApiError(url, f"invalid JSON body: {e}", status=response.status_code) from e

    def get_json(self, path, params=None):
        url = self.url(path)
        return self.decode(self.get(url, params=params), url)

    def paginate(self, path, params=None):
        """Yields each page of a list endpoint, following `Link: rel="next"`.

        Pages are fetched lazily: page N+1 is requested only when the caller
        asks for it. A failing page raises `GitlabApiError` after the pages
        already yielded.
        """
        url = self.url(path)
        page_params = {"per_page": PER_PAGE}
        page_params.update(params or {})
        while url:
            response = self.get(url, params=page_params)
            batch = self.decode(response, url)
            if not isinstance(batch, list):
                raise GitlabApiError(url, "expected a JSON list", status=response.status_code)
            # The next link already carries the whole query string
            url = response.links.get("next", {}).get("url")
            page_params = None
            yield batch

    def get_current_user(self):
        return self.get_json("user")


def entity_list_params(kind, owned_only=False):
    if kind is EntityKind.USER:
        return {}
    params = {}
    if kind is EntityKind.PROJECT:
        params["archived"] = "false"
    if owned_only:
        params["min_access_level"] = AccessLevel.OWNER.value
    return params


def is_bot_user(raw_user):
    return bool(BOT_USERNAME_RE.search(raw_user.get("username") or ""))


def iter_entities(client, kind, owned_only=False):
    """Yields batches of `EntityRef` for one domain, page by page."""
    params = entity_list_params(kind, owned_only)
    for batch in client.paginate(ENTITY_LIST_PATHS[kind], params):
        entities = []
        for raw in batch:
            if kind is EntityKind.USER and is_bot_user(raw):
                continue
            try:
                entities.append(entity_from_json(kind, raw, owned_only))
            except (KeyError, TypeError, ValueError) as e:
                raise GitlabApiError(client.url(ENTITY_LIST_PATHS[kind]), f"malformed {kind.value}: {e!r}") from e
        yield entities
