from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, List, Set, TypeVar

from ..persistence.models import GameState, SavePayload, utc_now
from .checksum import compute_checksum

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_FUEL_PRICE = 1.0
DEFAULT_ECONOMIC_MULTIPLIER = 1.0


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def _unique_with_reference(items: List[T], has_reference: Callable[[T], bool], kind: str) -> List[T]:
    """Keep the first instance per id, dropping ones without an id or data reference."""
    seen: Set[str] = set()
    kept = []
    for item in items:
        instance_id = getattr(item, "instance_id")
        if not instance_id or not has_reference(item) or instance_id in seen:
            logger.debug("Dropping %s instance %r", kind, instance_id)
            continue
        seen.add(instance_id)
        kept.append(item)
    return kept


def sanitize(payload: SavePayload, default_version: str, now: Callable[[], datetime] = utc_now) -> SavePayload:
    """Return a repaired copy of ``payload``.

    Applying it to its own output changes nothing.
    """
    fixed = payload.copy()
    current = now()

    if not fixed.save_name or not fixed.save_name.strip():
        fixed.save_name = f"Save Game {current:%Y-%m-%d}"
    if not fixed.save_version or not fixed.save_version.strip():
        fixed.save_version = default_version
    if fixed.creation_date is None:
        fixed.creation_date = current
    if fixed.last_modified is None or fixed.last_modified < fixed.creation_date:
        fixed.last_modified = fixed.creation_date
    if fixed.player_progress is None:
        fixed.player_progress = {}
    if fixed.settings is None:
        fixed.settings = {}

    if fixed.game_state is None:
        fixed.game_state = GameState()
    state = fixed.game_state
    state.current_credits = max(0.0, state.current_credits)
    state.total_earnings = max(0.0, state.total_earnings)
    state.total_expenses = max(0.0, state.total_expenses)
    state.outstanding_loans = max(0.0, state.outstanding_loans)
    state.total_play_time = max(0.0, state.total_play_time)

    fixed.vehicle_instances = _unique_with_reference(
        fixed.vehicle_instances, lambda v: v.vehicle_data is not None, "vehicle"
    )
    for v in fixed.vehicle_instances:
        v.current_fuel = _clamp(v.current_fuel, 0.0, v.vehicle_data.fuel_capacity)
        v.current_weight = max(0.0, v.current_weight)
        v.wear_level = _clamp(v.wear_level, 0.0, 1.0)
        v.total_distance = max(0.0, v.total_distance)
        v.total_revenue = max(0.0, v.total_revenue)
        v.total_expenses = max(0.0, v.total_expenses)

    fixed.contract_instances = _unique_with_reference(
        fixed.contract_instances, lambda c: c.contract_data is not None, "contract"
    )
    vehicle_ids = {v.instance_id for v in fixed.vehicle_instances}
    for c in fixed.contract_instances:
        c.progress_percentage = _clamp(c.progress_percentage, 0.0, 100.0)
        c.agreed_reward = max(0.0, c.agreed_reward)
        c.actual_reward = max(0.0, c.actual_reward)
        c.penalty_amount = max(0.0, c.penalty_amount)
        if c.acceptance_time is not None and c.deadline is not None and c.deadline < c.acceptance_time:
            c.deadline = c.acceptance_time
        if c.assigned_vehicle_id and c.assigned_vehicle_id not in vehicle_ids:
            c.assigned_vehicle_id = None

    contract_ids = {c.instance_id for c in fixed.contract_instances}
    for v in fixed.vehicle_instances:
        if v.assigned_contract_id and v.assigned_contract_id not in contract_ids:
            v.assigned_contract_id = None

    fixed.city_instances = _unique_with_reference(fixed.city_instances, lambda c: c.city_data is not None, "city")
    for c in fixed.city_instances:
        if c.current_fuel_price <= 0:
            c.current_fuel_price = DEFAULT_FUEL_PRICE
        if c.economic_multiplier <= 0:
            c.economic_multiplier = DEFAULT_ECONOMIC_MULTIPLIER
        c.current_population = max(0, c.current_population)
        c.player_reputation = max(0.0, c.player_reputation)
        c.traffic_level = max(0.0, c.traffic_level)

    fixed.checksum = compute_checksum(fixed)
    return fixed
