from __future__ import annotations

from typing import List, Optional

from pydantic import ValidationError

from invoicedesk.context import AppContext
from invoicedesk.models.client import Client
from invoicedesk.models.common import blank_to_none
from invoicedesk.models.invoice import InvoiceRow
from invoicedesk.storage.repo import TableRepository

CLIENT_COLUMNS = "id, name, email, phone, address, city, state, zip, created_at"
CLIENT_INVOICE_COLUMNS = "id, number, status, total, currency, created_at, sent_at, due_date"
PATCH_FIELDS = ("name", "email", "phone", "address", "city", "state", "zip")


class ClientService:
    def __init__(
        self,
        ctx: AppContext,
        repo: Optional[TableRepository] = None,
        invoices_repo: Optional[TableRepository] = None,
    ):
        self.ctx = ctx
        self.repo = repo or TableRepository(ctx.client, "clients", entity_name="client")
        self.invoices_repo = invoices_repo or TableRepository(ctx.client, "invoices", entity_name="invoice")

    async def list_clients(self) -> List[Client]:
        out: List[Client] = []
        for d in await self.repo.list_all(CLIENT_COLUMNS, order_by="created_at"):
            try:
                out.append(Client(**d))
            except ValidationError:
                # skip bad rows rather than failing the whole list
                continue
        return out

    async def get_client(self, client_id: str) -> Client:
        return Client(**await self.repo.get_by_id(client_id, CLIENT_COLUMNS))

    async def create_client(
        self,
        name: str,
        email: Optional[str] = None,
        phone: Optional[str] = None,
        address: Optional[str] = None,
        city: Optional[str] = None,
        state: Optional[str] = None,
        zip: Optional[str] = None,
    ) -> Client:
        client = Client(name=name.strip(), email=email, phone=phone, address=address,
                        city=city, state=state, zip=zip)
        payload = client.model_dump(mode="json", exclude={"created_at"})
        payload["user_id"] = self.ctx.user_id
        row = await self.repo.add(payload)
        try:
            return Client(**row)
        except ValidationError:
            return client

    async def update_client(self, client_id: str, **fields: Optional[str]) -> bool:
        """Sends only the fields given (and not None); False when there is nothing to change."""
        unknown = set(fields) - set(PATCH_FIELDS)
        if unknown:
            raise TypeError(f"Unknown client fields: {', '.join(sorted(unknown))}")
        patch = {k: v for k, v in fields.items() if v is not None}
        if not patch:
            return False
        if "email" in patch:
            # validates the address the same way as on create
            patch["email"] = Client(name="_", email=blank_to_none(patch["email"])).email
        await self.repo.update(patch, where={"id": str(client_id)})
        return True

    async def invoices_for_client(self, client_id: str) -> List[InvoiceRow]:
        rows = await self.invoices_repo.list_all(
            CLIENT_INVOICE_COLUMNS, where={"client_id": str(client_id)}, order_by="created_at"
        )
        out: List[InvoiceRow] = []
        for d in rows:
            try:
                out.append(InvoiceRow(**d))
            except ValidationError:
                continue
        return out
