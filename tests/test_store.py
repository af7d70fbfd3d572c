#!/usr/bin/env python3
"""InfluxDB store adapter tests with a stubbed client."""
from datetime import datetime, timezone

import pytest
from influxdb_client import WritePrecision

from metric_digest.config import Config
from metric_digest.errors import PartialQueryError, WriteError
from metric_digest.series import SummaryPoint
from metric_digest.store import InfluxStore, to_influx_point


CONFIG = Config(
    influx_token="token",
    influx_org="garden",
    influx_bucket="sensors",
    google_api_key="key",
)

POINT = SummaryPoint(
    measurement="dashboard_summary",
    model="gemini-2.5-flash",
    text="Soil is drying out.",
    interval_minutes=15,
    timestamp=datetime(2025, 6, 2, 10, 15, 4, tzinfo=timezone.utc),
)


class FakeRecord:
    def __init__(self, measurement, field, value):
        self.values = {"_measurement": measurement, "_field": field, "_value": value}

    def get_value(self):
        return self.values["_value"]


class FakeTable:
    def __init__(self, records):
        self.records = records


class FakeQueryApi:
    def __init__(self, tables=None, error=None):
        self.tables = tables or []
        self.error = error
        self.calls = []

    def query(self, flux, org=None):
        self.calls.append((flux, org))
        if self.error:
            raise self.error
        return self.tables


class FakeWriteApi:
    def __init__(self, error=None):
        self.error = error
        self.writes = []

    def write(self, **kwargs):
        if self.error:
            raise self.error
        self.writes.append(kwargs)


class FakeClient:
    def __init__(self, query_api=None, write_api=None):
        self._query_api = query_api or FakeQueryApi()
        self._write_api = write_api or FakeWriteApi()
        self.closed = False

    def query_api(self):
        return self._query_api

    def write_api(self, write_options=None):
        return self._write_api

    def close(self):
        self.closed = True


def make_store(client):
    store = InfluxStore(CONFIG)
    store.client.close()
    store.client = client
    return store


def test_line_protocol_of_summary_point():
    line = to_influx_point(POINT).to_line_protocol()

    assert line.startswith("dashboard_summary,model=gemini-2.5-flash ")
    assert 'text="Soil is drying out."' in line
    assert "interval_minutes=15i" in line
    assert line.endswith(" " + str(int(POINT.timestamp.timestamp())))


def test_query_rows_flattens_tables():
    tables = [
        FakeTable([FakeRecord("soil", "moisture", 41.5)]),
        FakeTable([FakeRecord("air", "temperature", 21.0), FakeRecord("air", "humidity", None)]),
    ]
    query_api = FakeQueryApi(tables)
    store = make_store(FakeClient(query_api=query_api))

    rows = list(store.query_rows("from(bucket: \"sensors\")"))

    assert rows == [
        ("soil", "moisture", 41.5),
        ("air", "temperature", 21.0),
        ("air", "humidity", None),
    ]
    assert query_api.calls[0][1] == "garden"


def test_query_failure_raised_as_partial_query_error():
    store = make_store(FakeClient(query_api=FakeQueryApi(error=ConnectionError("refused"))))

    with pytest.raises(PartialQueryError):
        list(store.query_rows("from(bucket: \"sensors\")"))


def test_write_point_sends_one_record():
    write_api = FakeWriteApi()
    store = make_store(FakeClient(write_api=write_api))

    store.write_point(POINT)

    assert len(write_api.writes) == 1
    sent = write_api.writes[0]
    assert sent["bucket"] == "sensors"
    assert sent["org"] == "garden"
    assert sent["write_precision"] == WritePrecision.S


def test_write_failure_raised_as_write_error():
    store = make_store(FakeClient(write_api=FakeWriteApi(error=RuntimeError("401"))))

    with pytest.raises(WriteError):
        store.write_point(POINT)


def test_context_manager_closes_client():
    client = FakeClient()
    with make_store(client):
        pass

    assert client.closed
