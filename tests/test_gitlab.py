from concurrent.futures import ThreadPoolExecutor

import pytest
import requests

from gitlab_tokens_exporter.errors import GitlabApiError
from gitlab_tokens_exporter.gitlab import (
    GitlabClient,
    entity_list_params,
    is_bot_user,
    iter_entities,
)
from gitlab_tokens_exporter.models import EntityKind
from tests.conftest import BASE_URL, HOSTNAME, FakeSession


def three_pages(session, fail_on_page_2=False):
    session.add("projects", [{"id": 1}, {"id": 2}], next_path="projects?page=2&per_page=100")
    if fail_on_page_2:
        session.add("projects?page=2&per_page=100", {"message": "500 Internal Server Error"}, status=500)
    else:
        session.add("projects?page=2&per_page=100", [{"id": 3}], next_path="projects?page=3&per_page=100")
    session.add("projects?page=3&per_page=100", [{"id": 4}, {"id": 5}])


def test_client_sends_private_token(session):
    client = GitlabClient(HOSTNAME, "glpat-secret", session=session)

    assert client.session.headers["PRIVATE-TOKEN"] == "glpat-secret"
    assert client.session.verify is True
    assert client.base_url == BASE_URL


def test_client_accept_invalid_certs(session):
    client = GitlabClient(HOSTNAME, "glpat-secret", accept_invalid_certs=True, session=session)

    assert client.session.verify is False


def test_paginate_follows_next_links(client, session):
    three_pages(session)

    pages = list(client.paginate("projects", {"archived": "false"}))

    assert [[item["id"] for item in page] for page in pages] == [[1, 2], [3], [4, 5]]
    assert session.calls == [
        (f"{BASE_URL}/projects", {"per_page": 100, "archived": "false"}),
        (f"{BASE_URL}/projects?page=2&per_page=100", None),
        (f"{BASE_URL}/projects?page=3&per_page=100", None),
    ]


def test_paginate_failure_on_page_2(client, session):
    three_pages(session, fail_on_page_2=True)
    seen = []

    with pytest.raises(GitlabApiError) as excinfo:
        for page in client.paginate("projects"):
            seen.extend(item["id"] for item in page)

    assert seen == [1, 2]
    assert excinfo.value.status == 500
    assert session.requested("projects?page=3&per_page=100") == []


def test_paginate_is_lazy(client, session):
    three_pages(session)

    pages = client.paginate("projects")
    next(pages)

    assert len(session.calls) == 1


def test_transport_errors_are_wrapped(client, session):
    session.add_handler("projects", lambda params: requests.exceptions.ConnectionError("connection refused"))

    with pytest.raises(GitlabApiError, match="connection refused"):
        list(client.paginate("projects"))


@pytest.mark.parametrize("body", ['{"message": "not a list"}', "<html>maintenance</html>"])
def test_paginate_rejects_unexpected_bodies(client, session, body):
    session.add("groups", body)

    with pytest.raises(GitlabApiError):
        list(client.paginate("groups"))


def test_get_json_raises_on_error_status(client, session):
    session.add("user", {"message": "401 Unauthorized"}, status=401)

    with pytest.raises(GitlabApiError) as excinfo:
        client.get_current_user()

    assert excinfo.value.status == 401
    assert excinfo.value.url == f"{BASE_URL}/user"


def test_requests_in_flight_never_exceed_the_limit():
    session = FakeSession(delay=0.02)
    session.add("version", {"version": "17.0.0"})
    limit = 3
    client = GitlabClient(HOSTNAME, "glpat-secret", max_concurrent_requests=limit, session=session)

    with ThreadPoolExecutor(max_workers=5 * limit) as executor:
        results = list(executor.map(lambda _: client.get_json("version"), range(5 * limit)))

    assert len(results) == 5 * limit
    assert 1 <= session.peak <= limit


def test_entity_list_params():
    assert entity_list_params(EntityKind.PROJECT) == {"archived": "false"}
    assert entity_list_params(EntityKind.PROJECT, owned_only=True) == {"archived": "false", "min_access_level": 50}
    assert entity_list_params(EntityKind.GROUP) == {}
    assert entity_list_params(EntityKind.GROUP, owned_only=True) == {"min_access_level": 50}
    assert entity_list_params(EntityKind.USER, owned_only=True) == {}


def test_is_bot_user():
    assert is_bot_user({"username": "project_12_bot_" + "a" * 32})
    assert is_bot_user({"username": "group_3_bot_0123456789abcdef0123456789abcdef"})
    assert not is_bot_user({"username": "alice"})
    assert not is_bot_user({"username": "project_12_bot"})


def test_iter_entities_skips_bot_users(client, session):
    session.add(
        "users",
        [
            {"id": 1, "username": "alice", "web_url": "https://gitlab.example.com/alice"},
            {"id": 2, "username": "project_5_bot_" + "f" * 32},
        ],
    )

    batches = list(iter_entities(client, EntityKind.USER))

    assert [[entity.path for entity in batch] for batch in batches] == [["alice"]]
    assert batches[0][0].kind is EntityKind.USER


def test_iter_entities_owned_only(client, session):
    session.add("groups", [{"id": 9, "full_path": "team", "path": "team"}])

    batches = list(iter_entities(client, EntityKind.GROUP, owned_only=True))

    assert batches[0][0].owned
    assert session.requested("groups") == [{"per_page": 100, "min_access_level": 50}]
