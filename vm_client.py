"""
Write and read location samples against a VictoriaMetrics-compatible store.
"""
import json
import logging
import math
from typing import Any, Optional

import httpx
from pydantic import BaseModel, Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

WRITE_PATH = "/api/v2/write"
QUERY_RANGE_PATH = "/api/v1/query_range"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="VM_")

    base_url: str = "http://localhost:8428"
    timeout: Optional[float] = None  # no timeout
    measurement: str = "t_zbs"
    user_id: str = "333"
    longitude: float = 111.11
    latitude: float = 111.11
    metric: str = "t_zbs_j"
    step: int = 8_640_000  # 100 days, one point per window
    window_seconds: int = 3 * 60 * 60
    event_offset_ms: int = 10_000
    log_level: str = "INFO"


class VictoriaMetricsError(Exception):
    pass


class RequestError(VictoriaMetricsError):
    "The request could not be built or sent."


class ProtocolError(VictoriaMetricsError):
    "The store answered, but not with what we expected."

    def __init__(self, message, status_code=None, body=None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class LocationSample(BaseModel):
    user_id: str
    longitude: float
    latitude: float
    timestamp: int  # ms since epoch


def _ms_to_seconds(ms: int) -> int:
    # Truncate toward zero, also for windows before the epoch.
    return ms // 1000 if ms >= 0 else -(-ms // 1000)


class QueryWindow(BaseModel):
    user_id: str
    start_ms: int
    end_ms: int
    step: int  # seconds
    metric: str

    def params(self) -> dict[str, str]:
        # The store wants whole seconds.
        return {
            "query": build_query(self.metric, self.user_id),
            "start": str(_ms_to_seconds(self.start_ms)),
            "end": str(_ms_to_seconds(self.end_ms)),
            "step": str(self.step),
        }


class Series(BaseModel):
    metric: Optional[dict[str, str]] = None
    values: Optional[list[Any]] = None  # null decodes as empty


class ResultData(BaseModel):
    result: list[Series] = Field(default_factory=list)


class QueryResponse(BaseModel):
    status: str
    data: ResultData = Field(default_factory=ResultData)


class QueryResult(BaseModel):
    status: str
    samples: list[LocationSample] = Field(default_factory=list)
    skipped: int = 0


def build_client(settings: Settings) -> httpx.Client:
    return httpx.Client(base_url=settings.base_url, timeout=settings.timeout)


def format_line(user_id: str, event_ts: int, longitude: float, latitude: float, measurement: str = "t_zbs") -> str:
    """Encode one observation as an InfluxDB line-protocol record.

    ``u_ts`` is sent as a tag and the record carries no timestamp, so the
    store stamps the point on arrival.
    """
    return f"{measurement},user_id={user_id},u_ts={int(event_ts)} j={longitude:f},w={latitude:f}\n"


def write_location(
    client: httpx.Client,
    user_id: str,
    event_ts: int,
    collect_ts: int,
    longitude: float,
    latitude: float,
    measurement: str = "t_zbs",
) -> None:
    """POST one location sample. Raises RequestError or ProtocolError on failure.

    ``collect_ts`` is not part of the stored record.
    """
    logger.debug(
        "write user_id=%s event_ts=%s collect_ts=%s longitude=%s latitude=%s",
        user_id, event_ts, collect_ts, longitude, latitude,
    )
    line = format_line(user_id, event_ts, longitude, latitude, measurement=measurement)
    logger.debug("line protocol: %r", line)

    try:
        response = client.post(
            WRITE_PATH,
            content=line.encode("utf-8"),
            headers={"Content-Type": "text/plain"},
        )
    except (httpx.RequestError, httpx.InvalidURL) as e:
        raise RequestError(str(e)) from e

    if response.status_code != 204:
        body = response.text
        raise ProtocolError(f"write failed: {body}", status_code=response.status_code, body=body)


def build_query(metric: str, user_id: str) -> str:
    return f'{metric}{{user_id="{user_id}"}}'


def _decode_pair(pair):
    "Return (timestamp_ms, value) for a well-formed pair, otherwise None."
    if not isinstance(pair, (list, tuple)) or len(pair) != 2:
        return None
    ts, raw = pair
    if isinstance(ts, bool) or not isinstance(ts, (int, float)):
        return None
    timestamp = ts * 1000
    try:
        if not math.isfinite(timestamp):
            return None
    except OverflowError:
        # int too large for a float
        return None
    if not isinstance(raw, str):
        return None
    try:
        value = float(raw)
    except ValueError:
        return None
    return int(timestamp), value


def decode_response(payload: Any) -> QueryResult:
    """Turn a decoded query_range body into samples.

    Rows that do not look like ``[float_seconds, "number"]`` are dropped and
    counted in ``skipped``. Series and row order is kept as received.
    """
    try:
        envelope = QueryResponse.model_validate(payload)
    except ValidationError as e:
        raise ProtocolError(f"unexpected response shape: {e}") from e

    samples = []
    skipped = 0
    for series in envelope.data.result:
        user_id = (series.metric or {}).get("user_id", "")
        for pair in series.values or []:
            decoded = _decode_pair(pair)
            if decoded is None:
                logger.debug("skipping malformed row %r", pair)
                skipped += 1
                continue
            timestamp, value = decoded
            # A single-metric query only carries one coordinate.
            samples.append(
                LocationSample(user_id=user_id, longitude=value, latitude=0.0, timestamp=timestamp)
            )
    return QueryResult(status=envelope.status, samples=samples, skipped=skipped)


def query_locations(
    client: httpx.Client,
    user_id: str,
    start_ms: int,
    end_ms: int,
    metric: str,
    step: int,
) -> QueryResult:
    "Range-query ``metric`` for one user. Raises RequestError or ProtocolError."
    window = QueryWindow(user_id=user_id, start_ms=start_ms, end_ms=end_ms, step=step, metric=metric)
    try:
        request = client.build_request("GET", QUERY_RANGE_PATH, params=window.params())
        logger.debug("query url: %s", request.url)
        response = client.send(request)
    except (httpx.RequestError, httpx.InvalidURL) as e:
        raise RequestError(str(e)) from e

    logger.debug("query response: %s", response.text)
    try:
        payload = response.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ProtocolError(f"invalid JSON in response: {e}", status_code=response.status_code, body=response.text) from e
    return decode_response(payload)
