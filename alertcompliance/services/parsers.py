"""
Parsers for received notification payloads, selected by name in the config.
"""
from typing import Callable, Dict, List

from pydantic import TypeAdapter, ValidationError

from alertcompliance.core.exceptions import MessageParseError
from alertcompliance.schemas.notifications import Notification, WebhookMessage

AlertMessageParser = Callable[[bytes], List[Notification]]

_notification_list = TypeAdapter(List[Notification])


def parse_default(body: bytes) -> List[Notification]:
    """Payload sent directly by the rule evaluator: a JSON list of alerts."""
    try:
        return _notification_list.validate_json(body)
    except ValidationError as e:
        raise MessageParseError("default", str(e)) from e


def parse_alertmanager(body: bytes) -> List[Notification]:
    """Alertmanager webhook payload."""
    try:
        msg = WebhookMessage.model_validate_json(body)
    except ValidationError as e:
        raise MessageParseError("alertmanager", str(e)) from e
    return [
        Notification(
            labels=a.labels,
            annotations=a.annotations,
            startsAt=a.startsAt,
            endsAt=a.endsAt,
            generatorURL=a.generatorURL,
        )
        for a in msg.alerts
    ]


ALERT_MESSAGE_PARSERS: Dict[str, AlertMessageParser] = {
    "default": parse_default,
    "alertmanager": parse_alertmanager,
}


def get_parser(name: str) -> AlertMessageParser:
    """
    Raises:
        KeyError: if no parser is registered under `name`
    """
    return ALERT_MESSAGE_PARSERS[name]
