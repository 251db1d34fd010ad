from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, List

from ..common import as_float
from .bundle import ContextBundle

logger = logging.getLogger("bizzy_brain")

DEMO_MOVE_RATIONALE = "Largest contributor to spend; 5–10% reduction yields material impact."


def load_demo_snapshot(path: Path) -> Dict[str, Any] | None:
    """Reads the demo JSON snapshot. Missing or unreadable files disable demo data for the turn."""
    try:
        raw = Path(path).read_text(encoding="utf-8")
        data = json.loads(raw)
    except (OSError, ValueError) as exc:
        logger.warning("[demo] snapshot load failed path=%s: %s", path, exc)
        return None
    if not isinstance(data, dict):
        logger.warning("[demo] snapshot root is not an object path=%s", path)
        return None
    return data


def _section(snapshot: Dict[str, Any], key: str) -> Dict[str, Any]:
    value = snapshot.get(key)
    return value if isinstance(value, dict) else {}


def _list(value: object) -> List[Dict[str, Any]]:
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, dict)]


def _top_cost_driver(financials: Dict[str, Any]) -> str | None:
    drivers = _list(financials.get("topCostDrivers"))
    if drivers and drivers[0].get("name"):
        return str(drivers[0]["name"])
    return None


def apply_demo(bundle: ContextBundle, snapshot: Dict[str, Any], month: str) -> None:
    """Fills only the empty KPI, forecast and move slots; live rows always stay."""
    fin = _section(snapshot, "financials")
    top = _top_cost_driver(fin)

    if not bundle.kpis:
        bundle.kpis = [
            {
                "month": month,
                "total_revenue": as_float(fin.get("mtdRevenue")),
                "total_expenses": as_float(fin.get("mtdExpenses")),
                "net_profit": as_float(fin.get("mtdProfit")),
                "profit_margin": as_float(fin.get("profitMarginPct")),
                "top_spending_category": top,
            }
        ]

    forecast = fin.get("forecastNext30d")
    if not bundle.forecast and isinstance(forecast, dict):
        bundle.forecast = [
            {
                "month": month,
                "cash_in": as_float(forecast.get("cashIn")),
                "cash_out": as_float(forecast.get("cashOut")),
                "net_cash": as_float(forecast.get("net")),
            }
        ]

    if not bundle.moves and fin.get("topCostDrivers"):
        bundle.moves = [
            {
                "title": f"Negotiate {top or 'top cost'} vendor terms",
                "rationale": DEMO_MOVE_RATIONALE,
            }
        ]

    bundle.demo_snapshot = snapshot


def _unpaid_lines(snapshot: Dict[str, Any]) -> List[str]:
    fin = _section(snapshot, "financials")
    rows = _list(fin.get("unpaidCustomers"))
    if not rows:
        return []
    projects = {
        str(job.get("external_id") or job.get("id")): str(job.get("title") or job.get("name") or "")
        for job in _list(_section(snapshot, "jobs").get("topUnpaid"))
    }
    lines = ["- Customers with unpaid invoices:"]
    for row in rows:
        invoice = str(row.get("invoiceId") or "")
        project = projects.get(invoice)
        contact = f" (contact: {row['contact']})" if row.get("contact") else ""
        lines.append(
            f"  • Invoice {invoice}{f' — {project}' if project else ''} for {row.get('name') or 'Unknown'}: "
            f"${row.get('amount') or 0} due {row.get('dueDate') or 'N/A'} ({row.get('daysLate') or 0} days late){contact}"
        )
    return lines


def demo_snapshot_block(snapshot: Dict[str, Any]) -> str:
    meta = _section(snapshot, "meta")
    fin = _section(snapshot, "financials")
    mkt = _section(snapshot, "marketing")
    channels = _list(mkt.get("channels"))
    upcoming = ", ".join(
        str(event.get("title")) for event in _list(_section(snapshot, "calendar").get("upcoming")) if event.get("title")
    )
    cash = fin.get("cashOnHand")

    lines = [
        "[Demo Business Snapshot]",
        f"- Business: {meta.get('businessName') or 'Demo Co.'} ({meta.get('period') or ''})",
        f"- Cash on hand: ${cash if cash is not None else '—'} • AR outstanding: ${fin.get('arOutstanding') or 0}",
        (
            f"- MTD Revenue: ${fin.get('mtdRevenue') or 0} • Expenses: ${fin.get('mtdExpenses') or 0} • "
            f"Profit: ${fin.get('mtdProfit') or 0} • Margin: {fin.get('profitMarginPct') or 0}%"
        ),
        (
            f"- Leads MTD: {mkt.get('leadsMTD') or 0} "
            f"(Best channel: {(channels[0].get('name') if channels else None) or 'Google Ads'})"
        ),
        f"- Upcoming: {upcoming or 'No major events'}",
    ]
    lines.extend(_unpaid_lines(snapshot))
    return "\n".join(lines)
