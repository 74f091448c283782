"""Suggested vs. expected revenue for a matrix view.

Suggested revenue prices each skill's demand hours at that skill's fee
rate. Expected revenue is what each client is projected to bill over the
months of the view. Both are restricted to the view's skills and months,
so the revenue always describes exactly the grid it is shown with.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import date

from practice_forecast.core.config import Settings
from practice_forecast.core.errors import DataSourceError
from practice_forecast.services.data_sources import (
    ClientFilter,
    ClientRecord,
    ForecastDataSource,
    PreferredStaffFilter,
    SkillsStore,
    normalize_id,
)
from practice_forecast.services.matrix_generator import ClientDemand, MatrixGenerator
from practice_forecast.services.matrix_model import MatrixData

logger = logging.getLogger(__name__)

DEFAULT_FEE_RATE = 75.0
FEE_RATES_CACHE_KEY = "skills:fee-rates"
MONEY_PRECISION = 2


def round_money(value: float) -> float:
    return round(float(value), MONEY_PRECISION) + 0.0


def resolve_fee_rate(
    skill: str,
    rates: Mapping[str, float],
    default_rate: float = DEFAULT_FEE_RATE,
) -> tuple[float, bool]:
    """Hourly rate for ``skill`` and whether the default was used.

    An exact name match wins, then a case-insensitive one. Zero or
    negative configured rates count as missing.
    """

    rate = rates.get(skill)
    if rate is not None and rate > 0:
        return float(rate), False
    wanted = skill.casefold()
    for name, value in rates.items():
        if name.casefold() == wanted and value > 0:
            return float(value), False
    return default_rate, True


@dataclass(frozen=True, slots=True)
class SkillRevenue:
    skill: str
    demand_hours: float
    fee_rate: float
    suggested_revenue: float
    uses_default_rate: bool


@dataclass(frozen=True, slots=True)
class ClientRevenue:
    client_id: str
    client_name: str
    demand_hours: float
    expected_revenue: float
    suggested_revenue: float
    expected_less_suggested: float
    expected_hourly_rate: float


@dataclass(frozen=True, slots=True)
class MatrixRevenue:
    skills: tuple[SkillRevenue, ...] = field(default_factory=tuple)
    clients: tuple[ClientRevenue, ...] = field(default_factory=tuple)
    total_expected_revenue: float = 0.0
    total_suggested_revenue: float = 0.0
    total_expected_less_suggested: float = 0.0

    def skill(self, name: str) -> SkillRevenue | None:
        return next((item for item in self.skills if item.skill == name), None)

    def client(self, client_id: str) -> ClientRevenue | None:
        wanted = normalize_id(client_id)
        return next((item for item in self.clients if item.client_id == wanted), None)


def build_matrix_revenue(
    matrix: MatrixData,
    client_demand: ClientDemand,
    clients: Sequence[ClientRecord],
    rates: Mapping[str, float],
    default_rate: float = DEFAULT_FEE_RATE,
) -> MatrixRevenue:
    """Price ``matrix``'s demand and compare it with expected client revenue.

    Client demand outside the view's skills or months is ignored. Only
    clients with demand in the view are listed, ordered by name.
    """

    resolved = {skill: resolve_fee_rate(skill, rates, default_rate) for skill in matrix.skills}
    skills = []
    for skill in matrix.skills:
        rate, uses_default = resolved[skill]
        hours = sum(point.demand_hours for point in matrix.points_for_skill(skill))
        skills.append(
            SkillRevenue(
                skill=skill,
                demand_hours=round_money(hours),
                fee_rate=rate,
                suggested_revenue=round_money(hours * rate),
                uses_default_rate=uses_default,
            )
        )

    month_keys = {bucket.key for bucket in matrix.months}
    by_id = {normalize_id(client.id): client for client in clients}
    rows = []
    for client_id, cells in client_demand.items():
        hours = 0.0
        suggested = 0.0
        for (skill, month), cell_hours in cells.items():
            if skill not in resolved or month not in month_keys:
                continue
            hours += cell_hours
            suggested += cell_hours * resolved[skill][0]
        if hours <= 0:
            continue
        record = by_id.get(normalize_id(client_id))
        monthly = record.expected_monthly_revenue if record else 0.0
        expected = monthly * len(matrix.months)
        rows.append(
            ClientRevenue(
                client_id=normalize_id(client_id),
                client_name=record.legal_name if record else client_id,
                demand_hours=round_money(hours),
                expected_revenue=round_money(expected),
                suggested_revenue=round_money(suggested),
                expected_less_suggested=round_money(expected - suggested),
                expected_hourly_rate=round_money(expected / hours),
            )
        )
    rows.sort(key=lambda row: (row.client_name.casefold(), row.client_id))

    total_expected = sum(row.expected_revenue for row in rows)
    total_suggested = sum(row.suggested_revenue for row in rows)
    return MatrixRevenue(
        skills=tuple(skills),
        clients=tuple(rows),
        total_expected_revenue=round_money(total_expected),
        total_suggested_revenue=round_money(total_suggested),
        total_expected_less_suggested=round_money(total_expected - total_suggested),
    )


def serialize_revenue(revenue: MatrixRevenue) -> dict[str, object]:
    return {
        "skills": [
            {
                "skill": item.skill,
                "demand_hours": item.demand_hours,
                "fee_rate": item.fee_rate,
                "suggested_revenue": item.suggested_revenue,
                "uses_default_rate": item.uses_default_rate,
            }
            for item in revenue.skills
        ],
        "clients": [
            {
                "client_id": item.client_id,
                "client_name": item.client_name,
                "demand_hours": item.demand_hours,
                "expected_revenue": item.expected_revenue,
                "suggested_revenue": item.suggested_revenue,
                "expected_less_suggested": item.expected_less_suggested,
                "expected_hourly_rate": item.expected_hourly_rate,
            }
            for item in revenue.clients
        ],
        "totals": {
            "expected_revenue": revenue.total_expected_revenue,
            "suggested_revenue": revenue.total_suggested_revenue,
            "expected_less_suggested": revenue.total_expected_less_suggested,
        },
    }


class MatrixRevenueService:
    def __init__(
        self,
        generator: MatrixGenerator,
        data_source: ForecastDataSource,
        skills_store: SkillsStore,
        *,
        default_fee_rate: float = DEFAULT_FEE_RATE,
        fee_rates_ttl_seconds: float | None = None,
    ) -> None:
        self.generator = generator
        self.data_source = data_source
        self.skills_store = skills_store
        self.cache = generator.cache
        self.default_fee_rate = default_fee_rate
        self.fee_rates_ttl_seconds = fee_rates_ttl_seconds

    @classmethod
    def from_settings(
        cls,
        generator: MatrixGenerator,
        data_source: ForecastDataSource,
        skills_store: SkillsStore,
        settings: Settings,
    ) -> MatrixRevenueService:
        return cls(
            generator,
            data_source,
            skills_store,
            default_fee_rate=settings.default_fee_rate,
            fee_rates_ttl_seconds=settings.skills_cache_ttl_seconds,
        )

    async def load_fee_rates(self) -> dict[str, float]:
        """Configured fee rates; an unavailable store prices everything at the default."""

        try:
            rates = await self.cache.get_or_set(
                FEE_RATES_CACHE_KEY,
                self.skills_store.list_skill_fee_rates,
                self.fee_rates_ttl_seconds,
            )
        except DataSourceError:
            logger.warning("Skill fee rates unavailable; using the default rate %.2f", self.default_fee_rate)
            return {}
        return dict(rates)

    async def revenue_for(
        self,
        matrix: MatrixData,
        forecast_type: str,
        as_of: date,
        client_filter: ClientFilter | None = None,
        preferred_staff: PreferredStaffFilter | None = None,
    ) -> MatrixRevenue:
        """Revenue for ``matrix``, a view generated with the same scope arguments."""

        client_demand = await self.generator.demand_by_client_cached(
            forecast_type,
            as_of,
            client_filter,
            preferred_staff,
        )
        clients = await self.data_source.list_clients()
        rates = await self.load_fee_rates()
        return build_matrix_revenue(matrix, client_demand, clients, rates, self.default_fee_rate)
