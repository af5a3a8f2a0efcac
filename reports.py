# reports.py
# Dashboard e relatórios por período (vendas x CMV), agregados com pandas

from __future__ import annotations
import datetime as dt
from decimal import Decimal
from typing import Dict, Iterable, List, NamedTuple, Optional

import pandas as pd

from costing import CmvEngine, SOLD_STATUSES
from db import Order, utcnow
from money import ZERO, round_money, to_decimal

ACTIVE_STATUSES = ("pending", "paid")
WEEKDAYS_PT = ["Seg", "Ter", "Qua", "Qui", "Sex", "Sáb", "Dom"]  # dayofweek: segunda = 0
ORDER_COLUMNS = ["id", "customer_id", "status", "created_at", "paid_at", "delivered_at", "items", "total"]


class DashboardStats(NamedTuple):
    total_sales: Decimal
    total_costs: Decimal
    total_profit: Decimal
    active_orders: int


class PeriodReport(NamedTuple):
    period: str
    start: dt.datetime
    total_earned: Decimal
    total_spent: Decimal
    net_profit: Decimal
    buckets: Dict[str, Decimal]


def orders_frame(orders: Iterable[Order]) -> pd.DataFrame:
    rows = [
        {
            "id": o.id,
            "customer_id": o.customer_id,
            "status": o.status,
            "created_at": o.created_at,
            "paid_at": o.paid_at,
            "delivered_at": o.delivered_at,
            "items": len(o.items),
            "total": float(to_decimal(o.total_amount)),
        }
        for o in orders
    ]
    df = pd.DataFrame(rows, columns=ORDER_COLUMNS)
    df["created_at"] = pd.to_datetime(df["created_at"])
    return df


def _sum(orders: Iterable[Order]) -> Decimal:
    return round_money(sum((to_decimal(o.total_amount) for o in orders), ZERO))


def dashboard_stats(orders: List[Order], cmv: CmvEngine, today: Optional[dt.date] = None) -> DashboardStats:
    """Vendas/custos do mês corrente + pedidos ativos (pendentes ou pagos)."""
    today = today or utcnow().date()
    month_start = dt.datetime(today.year, today.month, 1)
    month_orders = [o for o in orders if o.created_at and o.created_at >= month_start]
    sold = [o for o in month_orders if o.status in SOLD_STATUSES]
    total_sales = _sum(sold)
    total_costs = cmv.calculate_cmv(sold)
    return DashboardStats(
        total_sales=total_sales,
        total_costs=total_costs,
        total_profit=round_money(total_sales - total_costs),
        active_orders=sum(1 for o in orders if o.status in ACTIVE_STATUSES),
    )


def _daily_buckets(df: pd.DataFrame, now: dt.datetime) -> Dict[str, Decimal]:
    days = pd.date_range(end=pd.Timestamp(now).normalize(), periods=7, freq="D")
    if df.empty:
        sums = pd.Series(0.0, index=days)
    else:
        sums = df.groupby(df["created_at"].dt.normalize())["total"].sum().reindex(days, fill_value=0.0)
    return {WEEKDAYS_PT[d.dayofweek]: round_money(v) for d, v in zip(days, sums)}


def _weekly_buckets(df: pd.DataFrame, now: dt.datetime) -> Dict[str, Decimal]:
    out: Dict[str, Decimal] = {}
    ts = pd.Timestamp(now)
    for i in range(3, -1, -1):
        start = ts - pd.Timedelta(days=7 * (i + 1))
        end = ts - pd.Timedelta(days=7 * i)
        mask = (df["created_at"] >= start) & (df["created_at"] < end)
        out[f"Sem {4 - i}"] = round_money(df.loc[mask, "total"].sum())
    return out


def period_report(
    orders: List[Order],
    cmv: CmvEngine,
    period: str = "week",
    now: Optional[dt.datetime] = None,
) -> PeriodReport:
    """
    Pedidos entregues no período: semana = últimos 7 dias, mês = desde o dia 1.
    Custo = CMV (composição ou percentual estimado).
    """
    if period not in ("week", "month"):
        raise ValueError(f"período inválido: {period}")
    now = now or utcnow()
    if period == "week":
        start = now - dt.timedelta(days=7)
    else:
        start = dt.datetime(now.year, now.month, 1)

    completed = [
        o for o in orders
        if o.status == "delivered" and o.created_at and o.created_at >= start
    ]
    earned = _sum(completed)
    spent = cmv.calculate_cmv(completed)
    df = orders_frame(completed)
    buckets = _daily_buckets(df, now) if period == "week" else _weekly_buckets(df, now)
    return PeriodReport(
        period=period,
        start=start,
        total_earned=earned,
        total_spent=spent,
        net_profit=round_money(earned - spent),
        buckets=buckets,
    )


def report_csv(report: PeriodReport) -> str:
    rows = [{"Período": label, "Vendas": f"{value:.2f}"} for label, value in report.buckets.items()]
    rows += [
        {"Período": "Total vendido", "Vendas": f"{report.total_earned:.2f}"},
        {"Período": "Custos (CMV)", "Vendas": f"{report.total_spent:.2f}"},
        {"Período": "Lucro líquido", "Vendas": f"{report.net_profit:.2f}"},
    ]
    return pd.DataFrame(rows).to_csv(index=False)
