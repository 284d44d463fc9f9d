from datetime import datetime, timezone

import pandas as pd
import pytest

from lead_importer.dedup import PendingMerge, WritePlan
from lead_importer.errors import ProcessingError, StoreError
from lead_importer.models import ContactPerson, ImportBatch, LeadAggregate
from lead_importer.orchestrator import ImportOrchestrator
from lead_importer.store import SQLAlchemyLeadStore
from lead_importer.writer import ImportWriter


@pytest.fixture()
def store(tmp_path):
    return SQLAlchemyLeadStore.from_url(f"sqlite:///{tmp_path / 'leads.db'}")


def _acme(**overrides):
    values = dict(
        company_name="Acme",
        website="https://www.acme.com/",
        country="US",
        contact_persons=[ContactPerson(first_name="Ann", emails=["a@acme.com"], phones=["+15551234567"])],
        owner="u1",
        import_batch=ImportBatch(
            batch_id="batch-1",
            imported_at=datetime(2024, 1, 2, tzinfo=timezone.utc),
            imported_by="u1",
            file_name="leads.csv",
            total_count=1,
        ),
    )
    values.update(overrides)
    return LeadAggregate(**values)


def test_insert_and_get_round_trip(store):
    aggregate_id = store.insert_aggregate(_acme())

    loaded = store.get(aggregate_id)

    assert loaded.company_name == "Acme"
    assert loaded.owner == "u1"
    assert loaded.contact_persons[0].emails == ["a@acme.com"]
    assert loaded.contact_persons[0].phones == ["+15551234567"]
    assert loaded.import_batch.batch_id == "batch-1"
    assert loaded.import_batch.file_name == "leads.csv"
    assert store.get("missing") is None


def test_find_by_keys_uses_normalised_key(store):
    aggregate_id = store.insert_aggregate(_acme())
    store.insert_aggregate(_acme(website="acme.org"))

    found = store.find_by_keys([("acme", "acme.com"), ("globex", "")])

    assert list(found) == [("acme", "acme.com")]
    assert found[("acme", "acme.com")].id == aggregate_id


def test_append_and_remove_contacts(store):
    aggregate_id = store.insert_aggregate(_acme())
    extra = [ContactPerson(first_name="Bob", emails=["b@acme.com"])]

    store.append_contacts(aggregate_id, extra)
    assert [contact.first_name for contact in store.get(aggregate_id).contact_persons] == ["Ann", "Bob"]

    store.remove_contacts(aggregate_id, extra)
    assert [contact.first_name for contact in store.get(aggregate_id).contact_persons] == ["Ann"]


def test_missing_aggregate_raises_store_error(store):
    with pytest.raises(StoreError):
        store.append_contacts("missing", [ContactPerson(emails=["x@y.io"])])
    with pytest.raises(StoreError):
        store.delete_aggregate("missing")


def test_search_by_company(store):
    store.insert_aggregate(_acme())
    store.insert_aggregate(_acme(company_name="Globex", website="globex.com"))

    assert [lead.company_name for lead in store.search_by_company(name="  ACME ")] == ["Acme"]
    assert [lead.company_name for lead in store.search_by_company(website="http://globex.com/")] == ["Globex"]
    assert len(store.search_by_company()) == 2


def test_failed_batch_is_rolled_back_by_the_transaction(store):
    plan = WritePlan(
        new_aggregates=[_acme(id="new-1", company_name="Beta", website="beta.io")],
        merges=[PendingMerge(aggregate_id="missing", company_name="Ghost", existing_contacts=[],
                             contacts=[ContactPerson(emails=["g@ghost.io"])])],
    )

    with pytest.raises(ProcessingError):
        ImportWriter(store).write(plan)

    assert store.get("new-1") is None
    assert store.search_by_company() == []


def test_orchestrator_persists_into_database(store, tmp_path):
    path = tmp_path / "leads.csv"
    pd.DataFrame(
        [["Acme", "acme.com", "US", "a@acme.com"], ["ACME", "www.acme.com", "US", "b@acme.com"]],
        columns=["companyName", "website", "country", "contactEmail"],
    ).to_csv(path, index=False)
    orchestrator = ImportOrchestrator(store)

    first = orchestrator.import_files([path])
    second = orchestrator.import_files([path])

    assert first.results.successful == 1
    assert second.results.duplicates_in_db == 1
    assert second.results.duplicates_in_file == 1
    (aggregate,) = store.search_by_company(name="acme")
    assert [contact.emails for contact in aggregate.contact_persons] == [["a@acme.com"], ["b@acme.com"]]
