"""Human-readable customer report included in every backup archive.

The report is built in two stages:
  1. build_report_sections() turns the customer and its step data into
     ordered sections of (label, value) rows. Missing steps and missing
     fields are simply skipped; a section only appears if it has rows.
  2. render_customer_report() renders those sections through the Jinja2
     template `customer_report.html`.

Output depends only on the arguments: the generation time and the
exporting user are passed in, never read from the clock or the session.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal
from pathlib import Path
from typing import Any, Iterable

from jinja2 import Environment, FileSystemLoader, select_autoescape
from markupsafe import Markup

from app.config import settings

TEMPLATES_DIR = Path(__file__).resolve().parent.parent / "templates"
PAISE = Decimal("0.01")

_env = Environment(
    loader=FileSystemLoader(str(TEMPLATES_DIR)),
    autoescape=select_autoescape(["html"]),
    trim_blocks=True,
    lstrip_blocks=True,
)


@dataclass
class ReportSection:
    title: str
    rows: list[tuple[str, Any]] = field(default_factory=list)

    def add(self, label: str, value: Any) -> None:
        if value is None or value == "":
            return
        self.rows.append((label, value))


# ── Formatting helpers ──────────────────────────────────────

def format_inr(amount: float | int) -> str:
    """Rupee amount with Indian digit grouping: 1234567 -> ₹12,34,567."""
    value = Decimal(str(amount)).quantize(PAISE, rounding=ROUND_HALF_UP)
    negative = value < 0
    value = abs(value)
    whole = int(value)
    paise = int((value - whole) * 100)

    digits = str(whole)
    if len(digits) > 3:
        head, tail = digits[:-3], digits[-3:]
        groups = []
        while len(head) > 2:
            groups.insert(0, head[-2:])
            head = head[:-2]
        if head:
            groups.insert(0, head)
        digits = ",".join(groups) + "," + tail

    text = digits
    if paise:
        text += f".{paise:02d}"
    return f"{'-' if negative else ''}₹{text}"


def _format_date(value: Any) -> str:
    if isinstance(value, (datetime, date)):
        return value.strftime("%d/%m/%Y")
    if isinstance(value, str) and value:
        try:
            return datetime.fromisoformat(value).strftime("%d/%m/%Y")
        except ValueError:
            return value
    return ""


def _money(value: Any) -> str | None:
    if isinstance(value, (int, float)) and not isinstance(value, bool) and value:
        return format_inr(value)
    return None


def _flag(value: Any, done: str, pending: str, done_value: str = "done") -> str | None:
    if not value:
        return None
    return done if value == done_value else pending


def _field(obj: Any, name: str) -> Any:
    if isinstance(obj, dict):
        return obj.get(name)
    return getattr(obj, name, None)


def _steps_by_number(steps: Iterable[Any]) -> dict[int, dict]:
    by_number: dict[int, dict] = {}
    for step in steps:
        number = _field(step, "step_number")
        data = _field(step, "data")
        if number is not None and isinstance(data, dict):
            by_number[number] = data
    return by_number


def _equipment_summary(item: dict) -> str | None:
    parts = []
    if item.get("maker"):
        parts.append(str(item["maker"]))
    if item.get("capacity"):
        parts.append(f"{item['capacity']}W")
    summary = " - ".join(parts)
    if item.get("dcr_ndcr"):
        summary = f"{summary} ({str(item['dcr_ndcr']).upper()})".strip()
    return summary or None


# ── Section builders ────────────────────────────────────────

def _customer_section(customer: Any) -> ReportSection:
    section = ReportSection("Customer Information")
    section.add("Name", _field(customer, "name"))
    section.add("Phone", _field(customer, "phone"))
    section.add("Email", _field(customer, "email"))
    section.add("Address", _field(customer, "address"))

    customer_type = _field(customer, "type")
    if customer_type:
        section.add("Type", "Finance" if customer_type == "finance" else "Cash")
    status = _field(customer, "status")
    if status:
        section.add("Status", str(status).upper())

    kw = _field(customer, "kw_capacity")
    if kw:
        section.add("KW Capacity", f"{kw:g} kW" if isinstance(kw, (int, float)) else f"{kw} kW")
    section.add("Quotation", _money(_field(customer, "quotation")))
    section.add("Created Date", _format_date(_field(customer, "created_at")))
    return section


def _site_section(steps: dict[int, dict]) -> ReportSection:
    section = ReportSection("Site Details")
    location = steps.get(1, {}).get("site_location")
    if location:
        section.add(
            "Google Maps Location",
            Markup('<a href="{}" target="_blank">View Map</a>').format(location),
        )
    step2 = steps.get(2, {})
    if step2.get("selected_site"):
        section.add("Selected Site", str(step2["selected_site"]).replace("_", " ").upper())
    section.add("Selection Date", step2.get("completion_date"))
    return section


def _bank_section(steps: dict[int, dict]) -> ReportSection:
    section = ReportSection("Application & Bank Details")
    step3 = steps.get(3, {})
    section.add("Online Application", _flag(step3.get("online_submitted"), "Submitted", "Pending", "yes"))
    section.add("Bank Name", step3.get("bank_name"))
    section.add("Branch Name", step3.get("branch_name"))
    section.add("Application Date", step3.get("completion_date"))

    step4 = steps.get(4, {})
    section.add("Submitted to Bank", _flag(step4.get("submitted_to_bank"), "Yes", "No", "yes"))
    section.add("Submission Date", step4.get("completion_date"))

    step5 = steps.get(5, {})
    section.add("Bank Verification", _flag(step5.get("bank_verification"), "Completed", "Pending"))
    section.add("Verification Date", step5.get("completion_date"))

    section.add("Mail to Bank", _flag(steps.get(14, {}).get("mail_sent"), "Sent", "Pending"))
    return section


def _payment_section(steps: dict[int, dict]) -> ReportSection:
    section = ReportSection("Payment Information")
    step6 = steps.get(6, {})
    section.add("1st Disbursement", _money(step6.get("amount")))
    section.add("Remaining Amount", _money(step6.get("remaining_amount")))

    step16 = steps.get(16, {})
    section.add("Final Disbursement", _money(step16.get("amount")))
    section.add("Final Payment Date", step16.get("payment_date"))
    return section


def _installation_section(steps: dict[int, dict]) -> ReportSection:
    section = ReportSection("Installation & Materials")
    step7 = steps.get(7, {})
    materials = step7.get("materials")
    if isinstance(materials, dict):
        delivered = ", ".join(name for name, checked in materials.items() if checked)
        section.add("Materials Delivered", delivered)
        section.add("Delivery Date", step7.get("completion_date"))

    step8 = steps.get(8, {})
    for key, label in (("structure", "Structure"), ("wiring", "Wiring")):
        work = step8.get(key)
        if isinstance(work, dict):
            section.add(f"{label} Installation", _flag(work.get("status"), "Completed", "Pending"))
            section.add(f"{label} Team", work.get("team_name"))
    section.add("Installation Date", step8.get("completion_date"))

    step13 = steps.get(13, {})
    section.add("Meter Installation", _flag(step13.get("status"), "Completed", "Pending"))
    section.add("Meter Installer", step13.get("installer_name"))
    section.add("Meter Install Date", step13.get("installation_date"))
    return section


def _equipment_section(steps: dict[int, dict]) -> ReportSection:
    section = ReportSection("Equipment Details")
    step9 = steps.get(9, {})
    for key, label in (("panel", "Panel"), ("inverter", "Inverter")):
        group = step9.get(key)
        items = group.get("items") if isinstance(group, dict) else None
        if not isinstance(items, list):
            continue
        for i, item in enumerate(items, start=1):
            if not isinstance(item, dict):
                continue
            section.add(f"{label} {i}", _equipment_summary(item))
            section.add(f"{label} {i} Serial", item.get("serial_number"))
            section.add(f"{label} {i} Invoice", item.get("invoice_date"))
    if section.rows:
        section.add("Equipment Completion", step9.get("completion_date"))
    return section


def _inspection_section(steps: dict[int, dict]) -> ReportSection:
    section = ReportSection("Inspections & Approvals")
    section.add(
        "Print/Sign/Upload",
        _flag(steps.get(10, {}).get("print_sign_upload_done"), "Completed", "Pending"),
    )

    step11 = steps.get(11, {})
    section.add("MSEB Inspection", _flag(step11.get("mseb_inspection"), "Completed", "Pending"))
    section.add("MSEB Inspector", step11.get("inspector_name"))
    section.add("MSEB Inspection Date", step11.get("inspection_date"))

    step12 = steps.get(12, {})
    section.add("Meter Release Date", step12.get("meter_release_date"))
    section.add("Meter Upload Status", _flag(step12.get("upload_status"), "Completed", "Pending"))

    step15 = steps.get(15, {})
    section.add("Bank Inspector", step15.get("inspector_name"))
    section.add("Bank Inspection Date", step15.get("inspection_date"))
    return section


def build_report_sections(customer: Any, steps: Iterable[Any]) -> list[ReportSection]:
    by_number = _steps_by_number(steps)
    notes = ReportSection("Additional Notes")
    notes.add("Notes", _field(customer, "notes"))

    sections = [
        _customer_section(customer),
        _site_section(by_number),
        _bank_section(by_number),
        _payment_section(by_number),
        _installation_section(by_number),
        _equipment_section(by_number),
        _inspection_section(by_number),
        notes,
    ]
    return [s for s in sections if s.rows]


def render_customer_report(
    customer: Any,
    steps: Iterable[Any],
    *,
    exported_by: str,
    generated_at: datetime,
    vendor_name: str | None = None,
) -> str:
    template = _env.get_template("customer_report.html")
    return template.render(
        customer_name=_field(customer, "name") or "",
        sections=build_report_sections(customer, steps),
        exported_by=exported_by,
        generated_on=generated_at.strftime("%d/%m/%Y"),
        vendor_name=vendor_name or settings.vendor_name,
    )
