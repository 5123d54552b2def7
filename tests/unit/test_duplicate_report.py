from __future__ import annotations

import io
import json

import pytest

from scripts.duplicate_report import write_report
from tests.support.contact_store import InMemoryContactStore


def _seed(store: InMemoryContactStore) -> None:
    store.add_contact("a", first_name="Jane", last_name="Doe", email="jane@acme.io")
    store.add_contact("b", first_name="Jane", last_name="Doe", email="JANE@acme.io")
    store.add_contact("c", first_name="Jane", last_name="Doe", company="Acme")
    store.add_contact("d", first_name="Jane", last_name="Doe", company="acme")


@pytest.mark.asyncio
async def test_report_writes_one_json_line_per_pair(contact_store: InMemoryContactStore):
    _seed(contact_store)
    out = io.StringIO()

    written = await write_report(contact_store, out=out)

    lines = [json.loads(line) for line in out.getvalue().splitlines()]
    assert written == len(lines)
    assert {"contactId": "a", "duplicateId": "b", "similarity": 1.0, "matchReason": ["exact-email", "fuzzy-name"]} in lines
    assert all(line["contactId"] < line["duplicateId"] for line in lines)


@pytest.mark.asyncio
async def test_report_threshold_and_limit(contact_store: InMemoryContactStore):
    _seed(contact_store)

    strict = io.StringIO()
    await write_report(contact_store, threshold=1.0, out=strict)
    strict_pairs = {(r["contactId"], r["duplicateId"]) for r in map(json.loads, strict.getvalue().splitlines())}
    assert strict_pairs == {("a", "b")}

    loose = io.StringIO()
    assert await write_report(contact_store, threshold=0.3, limit=2, out=loose) == 2
