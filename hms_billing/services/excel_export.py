from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict, Iterable

from openpyxl import Workbook
from openpyxl.utils import get_column_letter


def _money(x) -> float:
    try:
        return float(Decimal(str(x or "0")))
    except Exception:
        return 0.0


def build_ledger_daybook_excel(fp, entries: Iterable):
    wb = Workbook()
    ws = wb.active
    ws.title = "Day Book"

    headers = [
        "Date", "Account Head", "Debit", "Credit", "Narration",
        "Billing Account", "Event", "Source",
    ]
    ws.append(headers)

    total_dr = 0.0
    total_cr = 0.0
    for e in entries:
        dr = _money(getattr(e, "debit", 0))
        cr = _money(getattr(e, "credit", 0))
        total_dr += dr
        total_cr += cr
        acc = getattr(e, "account", None)
        ws.append([
            getattr(e, "entry_date", None),
            getattr(e, "account_head", ""),
            dr,
            cr,
            getattr(e, "narration", "") or "",
            getattr(acc, "account_no", "") if acc else "",
            getattr(e, "event", ""),
            getattr(e, "source_ref", "") or "",
        ])

    ws.append(["", "TOTAL", round(total_dr, 2), round(total_cr, 2)])

    for col in range(1, len(headers) + 1):
        ws.column_dimensions[get_column_letter(col)].width = 20
    ws.column_dimensions["E"].width = 48

    wb.save(fp)


def build_discount_report_excel(fp, report: Dict[str, Any]):
    wb = Workbook()
    ws = wb.active
    ws.title = "Discount Summary"

    ws.append(["Period", f"{report['start']} to {report['end']}"])
    ws.append(["Accounts", report["total_accounts"]])
    ws.append(["Total Revenue", _money(report["total_revenue"])])
    ws.append(["Total Discount", _money(report["total_discount"])])
    ws.append(["Total Net", _money(report["total_net"])])
    ws.append(["Discount %", _money(report["discount_percentage"])])

    comp = report["compliance"]
    ws.append([])
    ws.append(["Approved Discounts", comp["approved_discounts"]])
    ws.append(["Approval Rate %", _money(comp["approval_rate"])])
    ws.append(["Reason Compliance %", _money(comp["reason_compliance"])])
    ws.append(["High Value Discounts", comp["high_value_discounts"]])
    ws.append(["High Value Approval Rate %",
               _money(comp["high_value_approval_rate"])])

    detail = wb.create_sheet("Discounts")
    headers = [
        "Account No", "Status", "Applied", "Proposed Amount", "Percentage",
        "Reason", "Approved By", "Approved At",
    ]
    detail.append(headers)
    for row in report["accounts"]:
        detail.append([
            row["account_no"],
            row["discount_status"],
            _money(row["discount_amount"]),
            _money(row["proposed_discount_amount"]),
            _money(row["discount_percentage"]),
            row["discount_reason"] or "",
            row["discount_approved_by"],
            row["discount_approved_at"],
        ])

    for sheet in (ws, detail):
        for col in range(1, len(headers) + 1):
            sheet.column_dimensions[get_column_letter(col)].width = 20

    wb.save(fp)
