"""
Remote-write driver.

Sends the test cases' samples to the backend in real time: every sample is
shifted by the start time and written once its timestamp is due, with all
series sharing a timestamp batched into one request.
"""
import asyncio
import time
from dataclasses import dataclass
from typing import List, Optional, Tuple

import httpx
import snappy
from google.protobuf import descriptor_pb2, descriptor_pool, message_factory

from alertcompliance import __version__
from alertcompliance.core.exceptions import RemoteWriteError
from alertcompliance.core.logging import get_logger
from alertcompliance.services.labels import Labels
from alertcompliance.services.timeline import TimeSeries

logger = get_logger(__name__)

CLIENT_TIMEOUT_S = 4.0
MAX_ATTEMPTS = 3
RETRY_BACKOFF_S = 1.0

REMOTE_WRITE_HEADERS = {
    "Content-Encoding": "snappy",
    "Content-Type": "application/x-protobuf",
    "X-Prometheus-Remote-Write-Version": "0.1.0",
    "User-Agent": f"alert-generator-compliance-tester/{__version__}",
}


def _build_write_request_class():
    """Message class for prometheus.WriteRequest, built from its descriptor."""
    F = descriptor_pb2.FieldDescriptorProto
    fdp = descriptor_pb2.FileDescriptorProto(
        name="alertcompliance/remote_write.proto",
        package="prometheus",
        syntax="proto3",
    )

    label = fdp.message_type.add(name="Label")
    label.field.add(name="name", number=1, type=F.TYPE_STRING, label=F.LABEL_OPTIONAL)
    label.field.add(name="value", number=2, type=F.TYPE_STRING, label=F.LABEL_OPTIONAL)

    sample = fdp.message_type.add(name="Sample")
    sample.field.add(name="value", number=1, type=F.TYPE_DOUBLE, label=F.LABEL_OPTIONAL)
    sample.field.add(name="timestamp", number=2, type=F.TYPE_INT64, label=F.LABEL_OPTIONAL)

    series = fdp.message_type.add(name="TimeSeries")
    series.field.add(
        name="labels", number=1, type=F.TYPE_MESSAGE, label=F.LABEL_REPEATED,
        type_name=".prometheus.Label",
    )
    series.field.add(
        name="samples", number=2, type=F.TYPE_MESSAGE, label=F.LABEL_REPEATED,
        type_name=".prometheus.Sample",
    )

    request = fdp.message_type.add(name="WriteRequest")
    request.field.add(
        name="timeseries", number=1, type=F.TYPE_MESSAGE, label=F.LABEL_REPEATED,
        type_name=".prometheus.TimeSeries",
    )

    pool = descriptor_pool.DescriptorPool()
    pool.AddSerializedFile(fdp.SerializeToString())
    return message_factory.GetMessageClass(pool.FindMessageTypeByName("prometheus.WriteRequest"))


WriteRequest = _build_write_request_class()


@dataclass(frozen=True)
class _FlatSample:
    labels: Labels
    timestamp_ms: int
    value: float


def build_write_request(batch: List[Tuple[Labels, int, float]]) -> bytes:
    """Encode (labels, timestamp_ms, value) triples, one series each, snappy compressed."""
    req = WriteRequest()
    for labels, ts, value in batch:
        series = req.timeseries.add()
        for name, val in labels:
            series.labels.add(name=name, value=val)
        series.samples.add(value=value, timestamp=ts)
    return snappy.compress(req.SerializeToString())


def _now_ms() -> int:
    return int(time.time() * 1000)


class RemoteWriter:
    """
    Remote writes the added time series in timestamp order.

    Series must be added before start(). Timestamps of the added samples
    are 0 based and get shifted by the start time.
    """

    def __init__(
        self,
        url: str,
        auth: Optional[Tuple[str, str]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url = url
        self.auth = auth
        self._transport = transport
        self._series: List[TimeSeries] = []
        self._stop = asyncio.Event()
        self._task: Optional[asyncio.Task] = None
        self._first_attempt = asyncio.Event()
        self.error: Optional[Exception] = None

    def add_time_series(self, series: List[TimeSeries]) -> None:
        self._series.extend(series)

    def _flatten(self, zero_ms: int) -> List[_FlatSample]:
        flat = [
            _FlatSample(ts.labels, s.timestamp_ms + zero_ms, s.value)
            for ts in self._series
            for s in ts.samples
        ]
        flat.sort(key=lambda s: s.timestamp_ms)
        return flat

    async def start(self) -> int:
        """
        Start writing. Returns the unix ms that relative timestamp 0 maps to,
        once the first batch has been attempted.
        """
        zero_ms = _now_ms()
        samples = self._flatten(zero_ms)
        logger.info("Starting remote write", total_samples=len(samples), zero_time=zero_ms)
        self._task = asyncio.create_task(self._run(samples))
        await self._first_attempt.wait()
        return zero_ms

    async def _sleep_until(self, ts_ms: int) -> bool:
        """Sleep until ts_ms. Returns False if stopped first."""
        delay_s = max(0, ts_ms - _now_ms()) / 1000
        try:
            await asyncio.wait_for(self._stop.wait(), timeout=delay_s)
            return False
        except asyncio.TimeoutError:
            return True

    async def _run(self, samples: List[_FlatSample]) -> None:
        try:
            async with httpx.AsyncClient(
                timeout=CLIENT_TIMEOUT_S,
                auth=self.auth,
                transport=self._transport,
            ) as client:
                idx = 0
                while idx < len(samples):
                    due = samples[idx].timestamp_ms
                    if not await self._sleep_until(due):
                        break
                    # One sample per series per timestamp.
                    batch = []
                    while idx < len(samples) and samples[idx].timestamp_ms == due:
                        s = samples[idx]
                        batch.append((s.labels, s.timestamp_ms, s.value))
                        idx += 1
                    try:
                        await self._store(client, due, batch)
                    except RemoteWriteError as e:
                        self.error = e
                        logger.error(
                            "Error in remote writing",
                            error_code=e.error_code.value,
                            timestamp=due,
                            err=e.message,
                        )
                        break
                    finally:
                        self._first_attempt.set()
        finally:
            self._first_attempt.set()

    async def _store(self, client: httpx.AsyncClient, ts_ms: int, batch) -> None:
        body = build_write_request(batch)
        logger.debug("Remote writing", timestamp=ts_ms, total_series=len(batch))
        last_error: Optional[RemoteWriteError] = None
        for attempt in range(1, MAX_ATTEMPTS + 1):
            try:
                response = await client.post(self.url, content=body, headers=REMOTE_WRITE_HEADERS)
            except httpx.TimeoutException:
                last_error = RemoteWriteError("remote write request timed out")
            except httpx.TransportError as e:
                last_error = RemoteWriteError(f"remote write request failed: {e}")
            else:
                if response.status_code // 100 == 2:
                    return
                last_error = RemoteWriteError(
                    f"server returned HTTP status {response.status_code}: {response.text[:256]}",
                    status_code=response.status_code,
                )
            if attempt < MAX_ATTEMPTS:
                logger.warning(
                    "Retrying remote write",
                    timestamp=ts_ms,
                    attempt=attempt,
                    err=last_error.message,
                )
                await asyncio.sleep(RETRY_BACKOFF_S)
        raise last_error

    def stop(self) -> None:
        """Abandon the remaining samples."""
        self._stop.set()

    async def wait(self) -> None:
        if self._task is not None:
            await self._task
