from __future__ import annotations

import base64
import io
import logging
import os
import re
import time
from datetime import tzinfo
from pathlib import Path
from shutil import which
from typing import Any, Callable, List, Optional, Tuple

import httpx
import pdfkit
from jinja2 import Environment, FileSystemLoader, select_autoescape
from PIL import Image, UnidentifiedImageError

from invoicedesk.context import AppContext
from invoicedesk.models.branding import Branding, DocumentBranding
from invoicedesk.models.invoice import InvoiceDetail
from invoicedesk.services.calculator import quantize, to_decimal
from invoicedesk.services.snapshot import InvoiceSnapshot, parse_backend_date

logger = logging.getLogger(__name__)

TEMPLATES_DIR = Path(__file__).resolve().parents[1] / "templates" / "pdf"
STYLESHEET = TEMPLATES_DIR / "stylesheet.css"

CURRENCY_SYMBOLS = {
    "USD": "$",
    "CAD": "$",
    "AUD": "$",
    "MXN": "$",
    "EUR": "€",
    "GBP": "£",
    "JPY": "¥",
}

DEFAULT_ACCENT_RGB = (0, 122, 255)  # #007AFF

# writes `html` as a PDF at `out_path`
PdfEngine = Callable[[str, Path], None]


# ---------- Formats ----------

def hex_to_rgb(value: Optional[str]) -> Tuple[int, int, int]:
    """'#1A2B3C', '1a2b3c' or '#abc' -> (r, g, b); anything else gives the default accent."""
    s = (value or "").strip().lstrip("#")
    if len(s) == 3:
        s = "".join(ch * 2 for ch in s)
    if len(s) != 6 or not re.fullmatch(r"[0-9a-fA-F]{6}", s):
        return DEFAULT_ACCENT_RGB
    return int(s[0:2], 16), int(s[2:4], 16), int(s[4:6], 16)


def _rgb_css(rgb: Tuple[int, int, int]) -> str:
    return "#{:02X}{:02X}{:02X}".format(*rgb)


def format_currency(amount: Any, code: Optional[str] = "USD") -> str:
    code = (code or "USD").strip().upper() or "USD"
    value = quantize(to_decimal(amount))
    sign = "-" if value < 0 else ""
    digits = f"{abs(value):,.2f}"
    symbol = CURRENCY_SYMBOLS.get(code)
    if symbol:
        return f"{sign}{symbol}{digits}"
    return f"{sign}{code} {digits}"


def pretty_date(value: Any, tz: Optional[tzinfo] = None) -> str:
    """MM/DD/YY in local time (or `tz`). Unparsable input comes back as given."""
    if value is None or value == "":
        return ""
    dt = parse_backend_date(value)
    if dt is None:
        return str(value)
    return dt.astimezone(tz).strftime("%m/%d/%y")


def _slug(text: str) -> str:
    text = (text or "").strip()
    text = re.sub(r'[\\/:*?"<>|\n\r\t]', "_", text)
    text = re.sub(r"\s+", " ", text)
    return text or "Invoice"


# ---------- PDF helpers ----------

def _clean_path(p: str) -> str:
    if not p:
        return ""
    p = p.strip().strip('"').strip("'")
    return os.path.normpath(p)


def _find_wkhtmltopdf(configured: Optional[str] = None) -> Optional[str]:
    """
    Locates wkhtmltopdf:
    - the configured path (settings.json / WKHTMLTOPDF / WKHTMLTOPDF_CMD)
    - PATH
    """
    if configured:
        path = _clean_path(configured)
        if Path(path).is_file():
            return path
        logger.warning("Configured wkhtmltopdf not found at %s", path)

    found = which("wkhtmltopdf")
    if found:
        return _clean_path(found)
    return None


def _render_pdf_with_weasyprint(html: str, out_path: Path, base_url: Optional[str]) -> None:
    """WeasyPrint fallback when wkhtmltopdf is missing."""
    try:
        from weasyprint import CSS, HTML
    except Exception as e:
        raise RuntimeError(
            "No wkhtmltopdf found and WeasyPrint is not usable. "
            "Install WeasyPrint (pip install weasyprint) or configure wkhtmltopdf.\n"
            f"Details: {e}"
        ) from e

    styles = [CSS(filename=str(STYLESHEET))] if STYLESHEET.exists() else None
    HTML(string=html, base_url=base_url).write_pdf(str(out_path), stylesheets=styles)


def default_engine(wkhtmltopdf_path: Optional[str] = None) -> PdfEngine:
    """wkhtmltopdf (pdfkit) first, WeasyPrint otherwise."""

    def write(html: str, out_path: Path) -> None:
        wkhtml = _find_wkhtmltopdf(wkhtmltopdf_path)
        if wkhtml:
            try:
                config = pdfkit.configuration(wkhtmltopdf=wkhtml)
                options = {
                    "enable-local-file-access": None,
                    "quiet": "",
                    "encoding": "UTF-8",
                    "page-size": "Letter",
                }
                pdfkit.from_string(html, str(out_path), options=options, configuration=config,
                                   css=str(STYLESHEET.resolve()))
                return
            except Exception as e:
                logger.warning("wkhtmltopdf failed (%s). Falling back to WeasyPrint...", e)

        _render_pdf_with_weasyprint(html, out_path, base_url=str(TEMPLATES_DIR.resolve()))

    return write


def _decode_image(data: bytes) -> Optional[str]:
    """MIME type of `data` when Pillow can decode it as a non-empty image."""
    try:
        with Image.open(io.BytesIO(data)) as img:
            img.load()
            if img.width <= 0 or img.height <= 0:
                return None
            return Image.MIME.get(img.format or "", "image/png")
    except (UnidentifiedImageError, OSError, ValueError) as e:
        logger.debug("Logo is not a decodable image: %s", e)
        return None


# ---------- Renderer ----------

class InvoicePDFRenderer:
    """
    Single-page invoice PDF: HTML built from templates/pdf/invoice.html, then written
    by the PDF engine into the export directory as Invoice-<number>.pdf.
    """

    def __init__(
        self,
        ctx: AppContext,
        branding_service: Any = None,
        defaults_service: Any = None,
        profile_service: Any = None,
        engine: Optional[PdfEngine] = None,
        http: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.ctx = ctx
        self.branding_service = branding_service
        self.defaults_service = defaults_service
        self.profile_service = profile_service
        self.engine = engine or default_engine(ctx.settings.wkhtmltopdf_path)
        self.http = http
        self.env = Environment(
            loader=FileSystemLoader(str(TEMPLATES_DIR)),
            autoescape=select_autoescape(["html", "xml"]),
        )

    # ----------- HTML -----------

    def _item_rows(self, snapshot: InvoiceSnapshot) -> List[dict]:
        rows = []
        for it in snapshot.items:
            rows.append({
                "qty": it.quantity,
                "title": it.title,
                "body": it.body,
                "units": (
                    f"{it.quantity} x {format_currency(it.unit_price, snapshot.currency)} each"
                    if it.quantity > 1 else None
                ),
                "amount": format_currency(it.amount, snapshot.currency),
            })
        return rows

    def render_html(self, snapshot: InvoiceSnapshot, branding: Optional[DocumentBranding] = None,
                    tz: Optional[tzinfo] = None) -> str:
        branding = branding or DocumentBranding()
        tpl = self.env.get_template("invoice.html")
        money = lambda v: format_currency(v, snapshot.currency)  # noqa: E731

        logo_src = None
        if branding.logo:
            mime = branding.logo_mime or "image/png"
            logo_src = f"data:{mime};base64,{base64.b64encode(branding.logo).decode('ascii')}"

        ctx = {
            "accent": _rgb_css(hex_to_rgb(branding.accent_hex)),
            "business": {
                "name": branding.business_name,
                "tagline": branding.tagline,
                "logo_src": logo_src,
            },
            "invoice": {
                "number": snapshot.number,
                "issued": pretty_date(snapshot.issued_at, tz),
                "due": pretty_date(snapshot.due_date, tz),
                "notes": snapshot.notes,
                "items": self._item_rows(snapshot),
                "subtotal": money(snapshot.subtotal),
                "tax": money(snapshot.tax) if snapshot.has_tax else None,
                "total": money(snapshot.total),
            },
            "client": snapshot.client,
            "footer_text": branding.footer_text,
        }
        return tpl.render(**ctx)

    # ----------- Files -----------

    def render(self, snapshot: InvoiceSnapshot, branding: Optional[DocumentBranding] = None,
               tz: Optional[tzinfo] = None) -> Path:
        """Writes Invoice-<number>.pdf into the export directory; an older file is replaced."""
        html = self.render_html(snapshot, branding, tz)

        out_dir = self.ctx.settings.export_path()
        out_dir.mkdir(parents=True, exist_ok=True)
        out_path = out_dir / f"Invoice-{_slug(snapshot.number)}.pdf"
        if out_path.exists():
            out_path.unlink()

        self.engine(html, out_path)
        logger.info("Invoice PDF written to %s", out_path)
        return out_path

    async def render_invoice(self, detail: InvoiceDetail, include_branding: bool = True) -> Path:
        snapshot = InvoiceSnapshot.from_detail(detail)
        branding = await self.resolve_branding(include_branding)
        return self.render(snapshot, branding)

    async def render_preview(self, snapshot: InvoiceSnapshot, include_branding: bool = True) -> bytes:
        branding = await self.resolve_branding(include_branding)
        return self.render(snapshot, branding).read_bytes()

    # ----------- Branding -----------

    async def _business_name(self, branding: Optional[Branding]) -> Optional[str]:
        if self.profile_service is not None:
            try:
                name = await self.profile_service.display_name()
            except Exception as e:
                logger.debug("Display name lookup failed: %s", e)
                name = None
            if name:
                return name
        return branding.business_name if branding else None

    async def _footer_text(self) -> Optional[str]:
        if self.defaults_service is None:
            return None
        try:
            defaults = await self.defaults_service.load_defaults()
        except Exception as e:
            logger.debug("Invoice defaults lookup failed: %s", e)
            return None
        return defaults.footer_notes if defaults else None

    async def resolve_branding(self, include_branding: bool = True) -> DocumentBranding:
        """
        Name: profile display name, then saved branding, then the default.
        Tagline, accent and logo only when `include_branding`.
        """
        branding: Optional[Branding] = None
        if include_branding and self.branding_service is not None:
            try:
                branding = await self.branding_service.load_branding()
            except Exception as e:
                logger.debug("Branding lookup failed: %s", e)

        logo, mime = (None, None)
        if include_branding:
            logo, mime = await self.fetch_logo(branding)

        return DocumentBranding(
            business_name=await self._business_name(branding),
            tagline=branding.tagline if branding else None,
            accent_hex=branding.accent_hex if branding else None,
            logo=logo,
            logo_mime=mime,
            footer_text=await self._footer_text(),
        )

    # ----------- Logo -----------

    def _logo_candidates(self, branding: Optional[Branding]) -> List[str]:
        urls = []
        if branding and branding.logo_public_url:
            urls.append(branding.logo_public_url)
        uid = self.ctx.user_id
        if uid and self.branding_service is not None:
            try:
                urls.append(self.branding_service.public_logo_url(uid.lower()))
            except Exception as e:
                logger.debug("Public logo URL unavailable: %s", e)
        return urls

    async def _download_no_cache(self, http: httpx.AsyncClient, url: str) -> Optional[bytes]:
        resp = await http.get(
            url,
            params={"cb": str(int(time.time()))},
            headers={"Cache-Control": "no-cache", "Pragma": "no-cache"},
            timeout=self.ctx.settings.logo_timeout,
        )
        if resp.status_code >= 400 or not resp.content:
            logger.debug("Logo download from %s failed (HTTP %s)", url, resp.status_code)
            return None
        return resp.content

    async def fetch_logo(self, branding: Optional[Branding]) -> Tuple[Optional[bytes], Optional[str]]:
        """Best-effort: (bytes, mime) of the first decodable logo, or (None, None)."""
        urls = self._logo_candidates(branding)
        if not urls:
            return None, None

        http = self.http or httpx.AsyncClient(follow_redirects=True)
        try:
            for url in urls:
                try:
                    data = await self._download_no_cache(http, url)
                except httpx.HTTPError as e:
                    logger.debug("Logo download from %s failed: %s", url, e)
                    continue
                if not data:
                    continue
                mime = _decode_image(data)
                if mime:
                    return data, mime
        finally:
            if self.http is None:
                await http.aclose()
        return None, None
