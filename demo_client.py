"""
Write one location sample, then read the last few hours back.

    VM_BASE_URL=http://localhost:8428 python demo_client.py
"""
import logging
import sys
import time
from typing import Optional

import httpx

from vm_client import Settings, VictoriaMetricsError, build_client, query_locations, write_location

logger = logging.getLogger("demo_client")


def main(settings: Optional[Settings] = None, client: Optional[httpx.Client] = None) -> int:
    settings = settings or Settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s - %(message)s",
    )
    owns_client = client is None
    if owns_client:
        client = build_client(settings)

    try:
        now_ms = int(time.time() * 1000)
        collect_ts = now_ms
        event_ts = collect_ts - settings.event_offset_ms

        print(f"Writing location ({settings.longitude}, {settings.latitude}) for user {settings.user_id}")
        try:
            write_location(
                client,
                settings.user_id,
                event_ts,
                collect_ts,
                settings.longitude,
                settings.latitude,
                measurement=settings.measurement,
            )
        except VictoriaMetricsError as e:
            logger.error("Write failed: %s", e)
            return 1
        print("Write succeeded")

        end_ms = now_ms
        start_ms = end_ms - settings.window_seconds * 1000
        try:
            result = query_locations(
                client, settings.user_id, start_ms, end_ms, settings.metric, settings.step
            )
        except VictoriaMetricsError as e:
            logger.critical("Query failed: %s", e)
            return 1

        for sample in result.samples:
            print(f"Received: {sample.model_dump()}")
        if result.skipped:
            print(f"Skipped {result.skipped} malformed rows")
        if not result.samples:
            print("No data found.")
        return 0
    finally:
        if owns_client:
            client.close()


if __name__ == "__main__":
    sys.exit(main())
