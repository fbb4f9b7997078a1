"""
Tests for the upstream competition client, using a mocked HTTP session.
"""
from unittest.mock import MagicMock

import pytest
import requests

from app.competitions import CompetitionClient, UpstreamError

BASE_URL = "https://upstream.test/api"


def make_response(payload=None, status=200):
    response = MagicMock()
    response.status_code = status
    response.json.return_value = payload
    if status >= 400:
        response.raise_for_status.side_effect = requests.HTTPError(f"{status} error")
    return response


@pytest.fixture
def upstream():
    """Fake upstream keyed by path."""
    return {
        "competitions/7": {
            "id": 7,
            "name": "Grand Prix Slovakia",
            "categories": [{"id": 11, "name": "Kata U14"}, {"id": 12, "name": "Kumite -60kg"}],
        },
        "categories/11/competitors": [{"id": 1, "name": "Alice"}],
        "categories/11/ladder": {"stages": [{"name": "Final", "pairs": [{"aka": 1, "ao": 2}]}]},
        "categories/12/competitors": [{"id": 2, "name": "Bob"}],
        "categories/12/ladder": {"stages": [{"name": "Semi"}]},
    }


@pytest.fixture
def session(upstream):
    session = MagicMock(spec=requests.Session)

    def get(url, timeout=None):
        path = url[len(BASE_URL) + 1:]
        if path not in upstream:
            return make_response(status=404)
        return make_response(upstream[path])

    session.get.side_effect = get
    return session


def test_fetch_competition_expands_categories(session):
    client = CompetitionClient(BASE_URL, session=session)

    document = client.fetch_competition(7)

    assert document["name"] == "Grand Prix Slovakia"
    first, second = document["categories"]
    assert first["competitors"] == [{"id": 1, "name": "Alice"}]
    assert first["ladder"]["stages"][0]["pairs"] == [{"aka": 1, "ao": 2}]
    assert second["competitors"] == [{"id": 2, "name": "Bob"}]
    assert second["ladder"]["stages"][0]["pairs"] == []
    assert session.get.call_count == 5


def test_fetch_competition_without_categories(session, upstream):
    upstream["competitions/8"] = {"id": 8, "name": "Club Cup"}
    client = CompetitionClient(BASE_URL, session=session)

    document = client.fetch_competition(8)

    assert document["categories"] == []
    assert session.get.call_count == 1


def test_missing_ladder_normalized(session, upstream):
    upstream["categories/12/ladder"] = None
    client = CompetitionClient(BASE_URL, session=session)

    document = client.fetch_competition(7)

    assert document["categories"][1]["ladder"] == {"stages": []}


def test_http_error_raises_upstream_error(session):
    client = CompetitionClient(BASE_URL, session=session)
    with pytest.raises(UpstreamError):
        client.fetch_competition(404)


def test_failing_category_part_fails_whole_document(session, upstream):
    del upstream["categories/12/competitors"]
    client = CompetitionClient(BASE_URL, session=session)
    with pytest.raises(UpstreamError):
        client.fetch_competition(7)


def test_connection_error_is_retried(session, upstream):
    upstream["competitions/8"] = {"id": 8, "name": "Club Cup"}
    real_get = session.get.side_effect
    failures = [requests.ConnectionError("reset")]

    def flaky_get(url, timeout=None):
        if failures:
            raise failures.pop()
        return real_get(url, timeout=timeout)

    session.get.side_effect = flaky_get
    client = CompetitionClient(BASE_URL, session=session)

    assert client.fetch_competition(8)["name"] == "Club Cup"
    assert session.get.call_count == 2


def test_invalid_json_raises_upstream_error(session):
    response = make_response()
    response.json.side_effect = ValueError("Expecting value")
    session.get.side_effect = None
    session.get.return_value = response
    client = CompetitionClient(BASE_URL, session=session)

    with pytest.raises(UpstreamError):
        client.fetch_competition(7)


def test_requests_use_configured_timeout(session):
    client = CompetitionClient(BASE_URL + "/", timeout=4.5, session=session)
    client.fetch_competition(7)
    for call in session.get.call_args_list:
        assert call.kwargs["timeout"] == 4.5
