import pytest

from lead_importer.errors import StoreError
from lead_importer.models import ContactPerson, LeadAggregate
from lead_importer.store import InMemoryLeadStore


def test_stored_aggregates_are_copies():
    store = InMemoryLeadStore()
    aggregate = LeadAggregate(company_name="Acme", contact_persons=[ContactPerson(emails=["a@acme.com"])])
    aggregate_id = store.insert_aggregate(aggregate)

    aggregate.contact_persons.append(ContactPerson(emails=["b@acme.com"]))
    loaded = store.get(aggregate_id)
    loaded.contact_persons.clear()

    assert len(store.get(aggregate_id).contact_persons) == 1
    assert aggregate.id is None


def test_find_by_keys_returns_the_oldest_match():
    first = LeadAggregate(id="first", company_name="Acme", website="acme.com")
    second = LeadAggregate(id="second", company_name="ACME", website="www.acme.com")
    store = InMemoryLeadStore([first, second])

    found = store.find_by_keys([("acme", "acme.com")])

    assert found[("acme", "acme.com")].id == "first"


def test_duplicate_ids_are_rejected():
    store = InMemoryLeadStore([LeadAggregate(id="a", company_name="Acme")])

    with pytest.raises(StoreError):
        store.insert_aggregate(LeadAggregate(id="a", company_name="Other"))


def test_remove_contacts_removes_most_recent_match():
    store = InMemoryLeadStore([LeadAggregate(id="a", company_name="Acme")])
    contact = ContactPerson(first_name="Bob", emails=["b@acme.com"])
    store.append_contacts("a", [ContactPerson(first_name="Older", emails=["b@acme.com"]), contact])

    store.remove_contacts("a", [contact])

    assert [person.first_name for person in store.get("a").contact_persons] == ["Older"]


def test_search_by_company_and_delete():
    store = InMemoryLeadStore(
        [LeadAggregate(id="a", company_name="Acme", website="acme.com"), LeadAggregate(id="b", company_name="Globex")]
    )

    assert [lead.id for lead in store.search_by_company(name="acme", website="https://acme.com")] == ["a"]

    store.delete_aggregate("a")

    assert [lead.id for lead in store.all()] == ["b"]
    with pytest.raises(StoreError):
        store.delete_aggregate("a")
