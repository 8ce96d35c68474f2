from datetime import datetime, timezone

import pytest

from alertcompliance.core.config import Settings
from alertcompliance.schemas.notifications import Notification
from alertcompliance.services.labels import Labels

ZERO_MS = 1_700_000_000_000


def dt(ms: int) -> datetime:
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc)


def make_notification(labels: Labels, annotations: Labels, starts_at_ms=None, ends_at_ms=None) -> Notification:
    return Notification(
        labels=labels.to_dict(),
        annotations=annotations.to_dict(),
        startsAt=dt(starts_at_ms) if starts_at_ms is not None else None,
        endsAt=dt(ends_at_ms) if ends_at_ms is not None else None,
        generatorURL="http://localhost:9090/graph?g0.expr=foo",
    )


@pytest.fixture
def make_settings():
    def _make(**overrides) -> Settings:
        values = {
            "remote_write_url": "http://localhost:9090/api/v1/write",
            "query_base_url": "http://localhost:9090",
            "rules_and_alerts_api_base_url": "http://localhost:9090",
        }
        values.update(overrides)
        return Settings(**values)
    return _make
