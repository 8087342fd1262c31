import pytest

from fakes import backend_error
from invoicedesk.errors import NotAuthenticatedError
from invoicedesk.services.activity_service import ActivityService


def _rows():
    return [
        {"id": "a1", "user_id": "user-1", "invoice_id": "inv-1", "event": "created",
         "created_at": "2026-10-15T09:00:00Z", "read_at": None},
        {"id": "a2", "user_id": "user-1", "invoice_id": "inv-1", "event": "sent",
         "created_at": "2026-10-16T09:00:00Z", "read_at": "2026-10-16T10:00:00Z"},
        {"id": "a3", "user_id": "user-1", "invoice_id": "inv-2", "event": "paid",
         "created_at": "2026-10-17T09:00:00Z", "read_at": None},
        {"id": "a4", "user_id": "user-1", "invoice_id": "inv-2", "event": "opened",
         "created_at": "2026-10-17T08:00:00Z", "read_at": None, "deleted_at": "2026-10-17T08:30:00Z"},
        {"id": "b1", "user_id": "user-2", "invoice_id": "inv-9", "event": "paid",
         "created_at": "2026-10-17T07:00:00Z", "read_at": None},
    ]


@pytest.fixture
def repo(repo_factory):
    return repo_factory(_rows())


@pytest.fixture
def service(ctx, repo):
    return ActivityService(ctx, repo=repo)


@pytest.mark.asyncio
async def test_page_is_newest_first_and_skips_deleted(service):
    page = await service.fetch_page_joined(0, 20)
    assert [a.id for a in page] == ["a3", "a2", "a1"]


@pytest.mark.asyncio
async def test_page_uses_offset_and_limit(service, repo):
    page = await service.fetch_page_joined(1, 1)
    assert [a.id for a in page] == ["a2"]
    call = repo.calls_to("list_all")[-1]
    assert call["offset"] == 1 and call["limit"] == 1
    assert call["null"] == ("deleted_at",)


@pytest.mark.asyncio
async def test_malformed_rows_are_skipped(ctx, repo_factory):
    repo = repo_factory([{"id": "x", "user_id": "user-1", "created_at": "2026-10-17T09:00:00Z"}] + _rows())
    page = await ActivityService(ctx, repo=repo).fetch_recent()
    assert "x" not in [a.id for a in page]


@pytest.mark.asyncio
async def test_fetch_for_invoice(service):
    events = await service.fetch_for_invoice("inv-1")
    assert [e.event for e in events] == ["sent", "created"]


@pytest.mark.asyncio
async def test_count_unread(service, repo):
    assert await service.count_unread() == 2
    call = repo.calls_to("count")[-1]
    assert call["null"] == ("read_at", "deleted_at")
    assert call["where"]["invoices.user_id"] == "user-1"


@pytest.mark.asyncio
async def test_count_unread_signed_out_is_zero(signed_out_ctx, repo):
    assert await ActivityService(signed_out_ctx, repo=repo).count_unread() == 0
    assert repo.calls == []


@pytest.mark.asyncio
async def test_reads_require_a_session(signed_out_ctx, repo):
    with pytest.raises(NotAuthenticatedError):
        await ActivityService(signed_out_ctx, repo=repo).fetch_recent()


@pytest.mark.asyncio
async def test_mark_all_read_only_touches_unread_rows(service, repo):
    await service.mark_all_read("2026-10-18T00:00:00Z")

    by_id = {r["id"]: r for r in repo.rows}
    assert by_id["a1"]["read_at"] == "2026-10-18T00:00:00Z"
    assert by_id["a2"]["read_at"] == "2026-10-16T10:00:00Z"
    assert by_id["b1"]["read_at"] is None


@pytest.mark.asyncio
async def test_mark_read_bulk(service, repo):
    await service.mark_read(["a1", "a3"], "2026-10-18T00:00:00Z")
    assert len(repo.calls_to("update")) == 1
    assert repo.calls_to("update")[0]["ids"] == ["a1", "a3"]


@pytest.mark.asyncio
async def test_mark_read_falls_back_to_one_by_one(service, repo):
    calls = {"n": 0}
    original = repo.update

    async def flaky_update(values, **kwargs):
        calls["n"] += 1
        if kwargs.get("ids") is not None:
            raise backend_error("bulk not allowed")
        return await original(values, **kwargs)

    repo.update = flaky_update
    await service.mark_read(["a1", "a3"], "2026-10-18T00:00:00Z")

    assert calls["n"] == 3
    by_id = {r["id"]: r for r in repo.rows}
    assert by_id["a1"]["read_at"] == by_id["a3"]["read_at"] == "2026-10-18T00:00:00Z"


@pytest.mark.asyncio
async def test_delete_is_soft(service, repo):
    await service.delete("a1", "2026-10-18T00:00:00Z")
    assert [r for r in repo.rows if r["id"] == "a1"][0]["deleted_at"] == "2026-10-18T00:00:00Z"
    assert "a1" not in [a.id for a in await service.fetch_recent(10)]


@pytest.mark.asyncio
async def test_log_inserts_event(service, repo):
    await service.log("inv-3", "sent", {"channel": "email"})
    added = repo.calls_to("add")[0]["item"]
    assert added == {"invoice_id": "inv-3", "event": "sent", "user_id": "user-1", "metadata": {"channel": "email"}}
