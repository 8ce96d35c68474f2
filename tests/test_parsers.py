import json

import pytest

from alertcompliance.core.exceptions import MessageParseError
from alertcompliance.services.parsers import get_parser, parse_alertmanager, parse_default

ALERT = {
    "labels": {"alertname": "A", "rulegroup": "G"},
    "annotations": {"description": "d"},
    "startsAt": "2023-11-14T22:13:21.000Z",
    "endsAt": "2023-11-14T22:17:21.000Z",
    "generatorURL": "http://localhost:9090/graph",
}


def test_default_parser():
    alerts = parse_default(json.dumps([ALERT]).encode())

    assert len(alerts) == 1
    assert alerts[0].labels == {"alertname": "A", "rulegroup": "G"}
    assert alerts[0].startsAt.year == 2023
    assert alerts[0].generatorURL == "http://localhost:9090/graph"


def test_default_parser_zero_time():
    alert = dict(ALERT, endsAt="0001-01-01T00:00:00Z")

    assert parse_default(json.dumps([alert]).encode())[0].endsAt.year == 1


def test_alertmanager_parser():
    msg = {
        "version": "4",
        "groupKey": "{}:{}",
        "status": "firing",
        "receiver": "webhook",
        "alerts": [dict(ALERT, status="firing", fingerprint="abc")],
    }

    alerts = parse_alertmanager(json.dumps(msg).encode())

    assert len(alerts) == 1
    assert alerts[0].annotations == {"description": "d"}
    assert alerts[0].endsAt.minute == 17


@pytest.mark.parametrize("parser", [parse_default, parse_alertmanager])
def test_invalid_body(parser):
    with pytest.raises(MessageParseError):
        parser(b"{not json")


def test_default_parser_rejects_object():
    with pytest.raises(MessageParseError, match="default"):
        parse_default(b'{"alerts": []}')


def test_get_parser():
    assert get_parser("default") is parse_default
    assert get_parser("alertmanager") is parse_alertmanager
    with pytest.raises(KeyError):
        get_parser("unknown")
