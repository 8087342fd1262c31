import pytest
from pydantic import ValidationError

from invoicedesk.models.client import Client
from invoicedesk.services.client_service import ClientService


@pytest.fixture
def clients(repo_factory):
    return repo_factory([
        {"id": "c1", "name": "Acme", "email": "billing@acme.example.com", "created_at": "2026-10-01T00:00:00Z"},
        {"id": "c2", "name": "Bolt", "email": "not-an-email", "created_at": "2026-10-02T00:00:00Z"},
        {"id": "c3", "name": "Cove", "city": "Austin", "state": "tx", "zip": "78701",
         "created_at": "2026-10-03T00:00:00Z"},
    ])


@pytest.fixture
def service(ctx, clients, repo_factory):
    invoices = repo_factory([
        {"id": "i1", "client_id": "c1", "number": "A1", "status": "paid", "created_at": "2026-10-04"},
        {"id": "i2", "client_id": "c3", "number": "A2", "status": "open", "created_at": "2026-10-05"},
    ])
    return ClientService(ctx, repo=clients, invoices_repo=invoices)


def test_city_state_line():
    assert Client(name="x", city="Austin", state="tx", zip="78701").city_state_line() == "Austin, TX 78701"
    assert Client(name="x", zip="78701").city_state_line() == "78701"
    assert Client(name="x").city_state_line() == ""


def test_blank_contact_fields_become_none():
    c = Client(name="x", email="  ", phone="")
    assert c.email is None and c.phone is None


@pytest.mark.asyncio
async def test_list_skips_invalid_rows(service):
    assert [c.name for c in await service.list_clients()] == ["Cove", "Acme"]


@pytest.mark.asyncio
async def test_get_client(service):
    assert (await service.get_client("c3")).city == "Austin"


@pytest.mark.asyncio
async def test_create_client_stamps_owner(service, clients):
    created = await service.create_client("  Dune Co ", email="hi@dune.example.com")

    added = clients.calls_to("add")[0]["item"]
    assert added["name"] == "Dune Co"
    assert added["user_id"] == "user-1"
    assert created.email == "hi@dune.example.com"


@pytest.mark.asyncio
async def test_create_client_rejects_bad_email(service):
    with pytest.raises(ValidationError):
        await service.create_client("Dune", email="nope")


@pytest.mark.asyncio
async def test_update_sends_only_given_fields(service, clients):
    assert await service.update_client("c1", phone="555-0100", city=None) is True
    assert clients.calls_to("update")[0]["values"] == {"phone": "555-0100"}


@pytest.mark.asyncio
async def test_update_with_nothing_to_change(service, clients):
    assert await service.update_client("c1", city=None) is False
    assert clients.calls_to("update") == []


@pytest.mark.asyncio
async def test_update_rejects_unknown_fields(service):
    with pytest.raises(TypeError):
        await service.update_client("c1", balance="10")


@pytest.mark.asyncio
async def test_invoices_for_client(service):
    assert [r.number for r in await service.invoices_for_client("c3")] == ["A2"]
