"""Per-entity token fetching and per-domain scans."""

import logging
from concurrent.futures import wait

from gitlab_tokens_exporter.errors import GitlabApiError, TokenDataError
from gitlab_tokens_exporter.gitlab import ENTITY_LIST_PATHS, iter_entities
from gitlab_tokens_exporter.models import (
    TOKEN_KIND_BY_ENTITY,
    EntityKind,
    entity_from_json,
    token_from_json,
)

logger = logging.getLogger(__name__)


# ─── Path resolution ───
def _path_of(client, cache, entity):
    if entity.path:
        return entity.path
    # Some GitLab versions do not send `full_path` for groups: walk up the parents
    if entity.kind is EntityKind.GROUP and entity.name:
        if entity.parent_id is None:
            return entity.name
        parent = resolve_path_by_id(client, cache, EntityKind.GROUP, entity.parent_id)
        return f"{parent}/{entity.name}"
    raise GitlabApiError(
        client.url(f"{ENTITY_LIST_PATHS[entity.kind]}/{entity.id}"),
        f"no path for {entity.kind.value} {entity.id}",
    )


def resolve_path(client, cache, entity):
    if entity.path:
        return cache.seed((entity.kind, entity.id), entity.path)
    return cache.resolve((entity.kind, entity.id), lambda: _path_of(client, cache, entity))


def resolve_path_by_id(client, cache, kind, entity_id):
    def lookup():
        raw = client.get_json(f"{ENTITY_LIST_PATHS[kind]}/{entity_id}")
        try:
            entity = entity_from_json(kind, raw)
        except (KeyError, TypeError, ValueError) as e:
            raise GitlabApiError(client.url(f"{ENTITY_LIST_PATHS[kind]}/{entity_id}"), repr(e)) from e
        return _path_of(client, cache, entity)

    return cache.resolve((kind, entity_id), lookup)


# ─── Tokens ───
def token_list_request(entity):
    if entity.kind is EntityKind.USER:
        return "personal_access_tokens", {"user_id": entity.id}
    return f"{ENTITY_LIST_PATHS[entity.kind]}/{entity.id}/access_tokens", None


def fetch_tokens(client, entity, cache):
    """Returns every usable token of `entity`.

    HTTP failures propagate; a token record we cannot interpret is logged and
    skipped.
    """
    path = resolve_path(client, cache, entity)
    token_kind = TOKEN_KIND_BY_ENTITY[entity.kind]
    list_path, params = token_list_request(entity)

    tokens = []
    for batch in client.paginate(list_path, params):
        for raw in batch:
            try:
                tokens.append(token_from_json(token_kind, raw, path, entity.web_url))
            except TokenDataError as e:
                logger.warning("Skipping a token of %s %s: %s", entity.kind.value, path, e)
    if tokens:
        logger.debug("%s %s: %d token(s)", entity.kind.value, path, len(tokens))
    return tokens


def scan_domain(client, kind, cache, executor, owned_only=False):
    """Lists every entity of `kind` and fetches their tokens through `executor`.

    Entity pages are walked in order; token fetches run concurrently. Any
    failure is raised once the fetches already submitted are done.
    """
    if kind is EntityKind.USER:
        current_user = client.get_current_user()
        if not current_user.get("is_admin", False):
            logger.warning(
                "Can't get users tokens with the current GITLAB_TOKEN (current_user.is_admin == false)"
            )
            return []

    futures = []
    try:
        for entities in iter_entities(client, kind, owned_only):
            futures.extend(executor.submit(fetch_tokens, client, entity, cache) for entity in entities)
    finally:
        # Let in-flight fetches finish even when pagination failed
        wait(futures)

    tokens = []
    for future in futures:
        tokens.extend(future.result())
    logger.info("%s scan done: %d entities, %d tokens", kind.value, len(futures), len(tokens))
    return tokens
