from __future__ import annotations

from ..persistence.models import ContractStatus, SavePayload, utc_now
from .registry import MigrationRegistry

FUEL_PRICE_ADJUSTMENT = 1.1
DEFAULT_CITY_REPUTATION = 50.0
DEFAULT_COMPANY_REPUTATION = 100.0
WEAR_DISTANCE = 100_000.0


def add_maintenance_history(payload: SavePayload) -> SavePayload:
    """Give vehicles a maintenance date and close out fully delivered contracts."""
    for v in payload.vehicle_instances:
        if v.last_maintenance is None:
            v.last_maintenance = v.purchase_date or payload.creation_date or utc_now()
    for c in payload.contract_instances:
        if c.status in (ContractStatus.ACCEPTED, ContractStatus.IN_PROGRESS) and c.progress_percentage >= 100.0:
            c.status = ContractStatus.COMPLETED
            if c.actual_reward == 0:
                c.actual_reward = c.agreed_reward
    return payload


def add_licenses_and_fuel_prices(payload: SavePayload) -> SavePayload:
    """Grant the Standard licence and apply the fuel price rebalance."""
    if payload.game_state is not None and not payload.game_state.owned_licenses:
        payload.game_state.owned_licenses = ["Standard"]
    for c in payload.city_instances:
        c.current_fuel_price = round(c.current_fuel_price * FUEL_PRICE_ADJUSTMENT, 4)
    payload.fuel_prices = {k: round(v * FUEL_PRICE_ADJUSTMENT, 4) for k, v in payload.fuel_prices.items()}
    return payload


def add_reputation_and_wear(payload: SavePayload) -> SavePayload:
    """Seed city reputation and derive wear from distance driven."""
    for c in payload.city_instances:
        if c.player_reputation <= 0:
            c.player_reputation = DEFAULT_CITY_REPUTATION
    for v in payload.vehicle_instances:
        if v.wear_level == 0 and v.total_distance > 0:
            v.wear_level = min(1.0, v.total_distance / WEAR_DISTANCE)
    return payload


def add_company_finance(payload: SavePayload) -> SavePayload:
    """Normalize loans and give the company a reputation score."""
    state = payload.game_state
    if state is not None:
        state.outstanding_loans = max(0.0, state.outstanding_loans)
        if state.company_reputation is None:
            state.company_reputation = DEFAULT_COMPANY_REPUTATION
    return payload


BUILTIN_STEPS = (
    ("1.0.0", "1.1.0", add_maintenance_history),
    ("1.1.0", "1.2.0", add_licenses_and_fuel_prices),
    ("1.2.0", "1.3.0", add_reputation_and_wear),
    ("1.3.0", "1.4.0", add_company_finance),
)


def register_builtin_steps(registry: MigrationRegistry) -> MigrationRegistry:
    for from_version, to_version, fn in BUILTIN_STEPS:
        registry.register(from_version, to_version, fn, (fn.__doc__ or "").strip())
    return registry


def default_registry() -> MigrationRegistry:
    return register_builtin_steps(MigrationRegistry())
