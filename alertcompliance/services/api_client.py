"""
Read API client: fetches the alerts, rules and ALERTS query endpoints and
groups the results by rule group.
"""
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

import httpx
from pydantic import ValidationError

from alertcompliance.core.exceptions import FetchError, ResponseParseError
from alertcompliance.schemas.api import (
    AlertsResponse,
    APIAlert,
    APIRuleGroup,
    QueryResponse,
    RulesResponse,
)
from alertcompliance.services.checks import InstantSample
from alertcompliance.services.labels import Labels

FETCH_TIMEOUT_S = 10.0


async def fetch(
    url: str,
    auth: Optional[Tuple[str, str]] = None,
    params: Optional[Dict[str, str]] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> bytes:
    """
    GET `url` and return the body.

    Raises:
        FetchError: on transport failure or a non-200 response
    """
    try:
        async with httpx.AsyncClient(timeout=FETCH_TIMEOUT_S, auth=auth, transport=transport) as client:
            response = await client.get(url, params=params)
    except httpx.TimeoutException:
        raise FetchError(url, "request timed out")
    except httpx.HTTPError as e:
        raise FetchError(url, str(e)) from e

    if response.status_code != 200:
        raise FetchError(url, f"non 200 response code {response.status_code}")
    return response.content


def _validate(model: type, body: bytes):
    try:
        res = model.model_validate_json(body)
    except ValidationError as e:
        raise ResponseParseError(f"unmarshal response into json: {e}") from e
    if res.status != "success":
        raise ResponseParseError(f"got non success status {res.status!r}")
    return res


def parse_and_group_alerts(body: bytes) -> Dict[str, List[APIAlert]]:
    """Alerts by their `rulegroup` label."""
    res: AlertsResponse = _validate(AlertsResponse, body)
    grouped: Dict[str, List[APIAlert]] = {}
    for alert in res.data.alerts:
        grouped.setdefault(alert.labels.get("rulegroup", ""), []).append(alert)
    return grouped


def parse_and_group_rules(body: bytes) -> Dict[str, APIRuleGroup]:
    """Rule groups by name."""
    res: RulesResponse = _validate(RulesResponse, body)
    return {g.name: g for g in res.data.groups}


def parse_and_group_metrics(body: bytes) -> Dict[str, List[InstantSample]]:
    """Instant vector samples by their `rulegroup` label."""
    res: QueryResponse = _validate(QueryResponse, body)
    grouped: Dict[str, List[InstantSample]] = {}
    for vec in res.data.result:
        if len(vec.value) != 2:
            raise ResponseParseError(f"malformed sample value {vec.value!r}")
        try:
            t = int(float(vec.value[0]))
            v = float(vec.value[1])
        except (TypeError, ValueError) as e:
            raise ResponseParseError(f"malformed sample value {vec.value!r}: {e}") from e
        grouped.setdefault(vec.metric.get("rulegroup", ""), []).append(
            InstantSample(metric=Labels.from_map(vec.metric), t=t, v=v)
        )
    return grouped


def alerts_query_params(now_ms: int) -> Dict[str, str]:
    """Query parameters for the ALERTS instant query at `now_ms`."""
    at = datetime.fromtimestamp(now_ms // 1000, tz=timezone.utc)
    return {"query": "ALERTS", "time": at.strftime("%Y-%m-%dT%H:%M:%SZ")}
