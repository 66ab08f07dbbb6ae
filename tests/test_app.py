import asyncio
import logging

import pytest
import requests

import app
from _testutil import BASE_URL, FakeResponse, FakeSession, changeset_reply, csrf_reply

READ_URL = f"{BASE_URL}/sap/opu/odata/sap/YY1_SALESDOCCREDITBLOCK_CDS/YY1_SalesDocCreditBlock"
STANDARD_BATCH = f"{BASE_URL}/sap/opu/odata/sap/API_SALES_ORDER_SRV/$batch"
FREE_BATCH = f"{BASE_URL}/sap/opu/odata/sap/API_SALES_ORDER_WITHOUT_CHARGE_SRV/$batch"


def _row(order, item, category, block):
    return {"SalesDocument": order, "SalesDocumentItem": item, "SDDocumentCategory": category, "SetCreditBlock": block}


class BackendStub:
    """Serves the credit block read, CSRF fetches and $batch posts."""

    def __init__(self, rows):
        self.rows = rows

    def get(self, url, **kwargs):
        if url == READ_URL:
            return FakeResponse(200, json_body={"d": {"results": self.rows}})
        return csrf_reply()

    def post(self, url, **kwargs):
        n = kwargs["data"].decode().count("\r\nPATCH ")
        return changeset_reply([(204, None)] * n)


def _session_for(rows):
    stub = BackendStub(rows)
    return FakeSession(get=stub.get, post=stub.post)


def test_end_to_end_one_batch_per_order(job_config, caplog):
    caplog.set_level(logging.INFO)
    session = _session_for([
        _row("A", "10", "C", True),
        _row("B", "10", "I", True),
        _row("A", "20", "C", False),
        _row("A", "30", "C", True),
        _row("B", "20", "I", True),
    ])

    summary = asyncio.run(app.run_once(job_config, session, wait=True))

    assert (summary.record_count, summary.order_count, summary.read_failed) == (5, 2, False)

    posts = {url: kwargs["data"].decode() for _, url, kwargs in session.posts}
    assert len(session.posts) == 2
    assert set(posts) == {STANDARD_BATCH, FREE_BATCH}

    standard = posts[STANDARD_BATCH]
    assert standard.count("\r\nPATCH ") == 3
    for item, reason in (("10", "70"), ("20", ""), ("30", "70")):
        line = f"PATCH A_SalesOrderItem(SalesOrder='A',SalesOrderItem='{item}') HTTP/1.1"
        assert line in standard
        after = standard.split(line, 1)[1]
        assert after.split("--changeset_", 1)[0].rstrip().endswith(f'{{"SalesDocumentRjcnReason": "{reason}"}}')

    free = posts[FREE_BATCH]
    assert free.count("\r\nPATCH ") == 2
    assert free.count('{"SalesDocumentRjcnReason": "70"}') == 2
    assert "A_SlsOrdWthoutChrgItm(SalesOrderWithoutCharge='B',SalesOrderWithoutChargeItem='10')" in free
    assert "A_SlsOrdWthoutChrgItm(SalesOrderWithoutCharge='B',SalesOrderWithoutChargeItem='20')" in free

    successes = [r.getMessage() for r in caplog.records if r.name == "sales_order_update" and r.levelno == logging.INFO]
    assert successes.count("Sales Order A Successfully updated") == 3
    assert successes.count("Sales Order B Successfully updated") == 2


def test_nothing_to_update(job_config, caplog):
    caplog.set_level(logging.INFO)
    session = _session_for([])

    summary = asyncio.run(app.run_once(job_config, session, wait=True))

    assert (summary.record_count, summary.order_count, summary.read_failed) == (0, 0, False)
    assert session.posts == []
    assert any(":: Nothing to update ::" in r.getMessage() for r in caplog.records if r.name == "app")


def test_read_failure_is_flagged_not_hidden(job_config, caplog):
    session = FakeSession(get=requests.ConnectionError("no route to host"))

    summary = asyncio.run(app.run_once(job_config, session, wait=True))

    assert summary.read_failed is True
    assert summary.order_count == 0
    assert session.posts == []
    errors = [r.getMessage() for r in caplog.records if r.name == "app" and r.levelno == logging.ERROR]
    assert len(errors) == 1
    assert "no route to host" in errors[0]
    assert not any(":: Nothing to update ::" in r.getMessage() for r in caplog.records)


def test_unexpected_error_is_logged_not_raised(job_config, monkeypatch, caplog):
    def broken_grouping(records):
        raise RuntimeError("grouping exploded")

    monkeypatch.setattr(app, "group_by_order", broken_grouping)
    session = _session_for([_row("A", "10", "C", True)])

    summary = asyncio.run(app.run_once(job_config, session, wait=True))

    assert summary.record_count == 1
    assert any("Error executing service" in r.getMessage() for r in caplog.records if r.name == "app")


def test_main_exits_when_destination_missing(monkeypatch):
    monkeypatch.delenv("destinations", raising=False)

    with pytest.raises(SystemExit) as exc:
        app.main()

    assert exc.value.code == 1
