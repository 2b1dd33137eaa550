"""
In-memory stand-in for the two VictoriaMetrics endpoints the client talks to.

    python fake_store.py    # serves on localhost:8428
"""
import re
import time
from typing import Optional

import uvicorn
from fastapi import FastAPI, HTTPException, Request, Response
from fastapi.responses import JSONResponse
from pydantic_settings import BaseSettings, SettingsConfigDict

SELECTOR_RE = re.compile(r"^\s*([a-zA-Z_:][a-zA-Z0-9_:]*)\s*(?:\{(.*)\})?\s*$")
LABEL_RE = re.compile(r'\s*([a-zA-Z_][a-zA-Z0-9_]*)\s*=\s*"([^"]*)"\s*(?:,|$)')


class StoreSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="FAKE_STORE_")

    separator: str = "_"  # joins measurement and field into the metric name
    max_payload_size: int = 16 * 1024 * 1024  # 16MB max payload
    port: int = 8428


class LineProtocolError(ValueError):
    pass


def parse_line(line: str, separator: str = "_", now: Optional[float] = None):
    """Parse one line-protocol record into ``(name, labels, ts_seconds, value)`` points.

    Only numeric fields are kept. A record without a timestamp is stamped with
    ``now``; explicit timestamps are nanoseconds.
    """
    parts = line.strip().split(" ")
    if len(parts) not in (2, 3):
        raise LineProtocolError(f"cannot parse line {line!r}")
    head, fields = parts[0], parts[1]

    measurement, *tags = head.split(",")
    if not measurement:
        raise LineProtocolError(f"missing measurement in {line!r}")
    labels = {}
    for tag in tags:
        key, sep, value = tag.partition("=")
        if not sep or not key:
            raise LineProtocolError(f"bad tag {tag!r}")
        labels[key] = value

    if len(parts) == 3:
        try:
            ts = int(parts[2]) / 1e9
        except ValueError:
            raise LineProtocolError(f"bad timestamp {parts[2]!r}") from None
    else:
        ts = time.time() if now is None else now

    points = []
    for field in fields.split(","):
        key, sep, raw = field.partition("=")
        if not sep or not key:
            raise LineProtocolError(f"bad field {field!r}")
        if raw.endswith(("i", "u")):
            raw = raw[:-1]
        try:
            value = float(raw)
        except ValueError:
            # String and boolean fields are not stored.
            continue
        points.append((f"{measurement}{separator}{key}", labels, ts, value))
    return points


def parse_selector(query: str):
    match = SELECTOR_RE.match(query)
    if match is None:
        raise ValueError(f"unsupported query {query!r}")
    name, body = match.groups()
    matchers = {}
    if body and body.strip():
        pos = 0
        while pos < len(body):
            label = LABEL_RE.match(body, pos)
            if label is None:
                raise ValueError(f"cannot parse label matchers {body!r}")
            matchers[label.group(1)] = label.group(2)
            pos = label.end()
    return name, matchers


def _bad_data(message):
    return JSONResponse(
        status_code=400,
        content={"status": "error", "errorType": "bad_data", "error": message},
    )


def build_app(settings: StoreSettings):
    # (name, sorted label items) -> [(ts_seconds, value), ...]
    series = {}

    app = FastAPI()

    @app.post("/api/v2/write", status_code=204)
    async def write(request: Request):
        "Ingest line-protocol records."

        content_length = request.headers.get("content-length")
        if content_length and int(content_length) > settings.max_payload_size:
            raise HTTPException(status_code=413, detail="Payload too large")

        body = (await request.body()).decode("utf-8", errors="replace")
        now = time.time()
        points = []
        for line in body.splitlines():
            if not line.strip():
                continue
            try:
                points.extend(parse_line(line, settings.separator, now=now))
            except LineProtocolError as e:
                return Response(status_code=400, content=str(e), media_type="text/plain")

        for name, labels, ts, value in points:
            key = (name, tuple(sorted(labels.items())))
            series.setdefault(key, []).append((ts, value))
        return Response(status_code=204)

    @app.get("/api/v1/query_range")
    async def query_range(query: str = "", start: str = "", end: str = "", step: str = ""):
        try:
            name, matchers = parse_selector(query)
        except ValueError as e:
            return _bad_data(str(e))
        try:
            start_s = float(start)
            end_s = float(end) if end else time.time()
        except ValueError:
            return _bad_data(f"cannot parse start={start!r} end={end!r}")
        if end_s < start_s:
            return _bad_data("end must not be before start")

        result = []
        for (series_name, label_items), points in series.items():
            labels = dict(label_items)
            if series_name != name:
                continue
            if any(labels.get(k) != v for k, v in matchers.items()):
                continue
            values = [[ts, repr(value)] for ts, value in sorted(points) if start_s <= ts <= end_s]
            if values:
                result.append({"metric": {"__name__": series_name, **labels}, "values": values})
        return {"status": "success", "data": {"resultType": "matrix", "result": result}}

    return app


settings = StoreSettings()
app = build_app(settings)

if __name__ == "__main__":
    uvicorn.run(app, port=settings.port)
