from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

# Starting balance of a freshly created company
STARTING_CREDITS = 50_000.0


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_datetime(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 string into an aware datetime. Naive values are taken as UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def format_datetime(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


class ContractStatus(str, Enum):
    AVAILABLE = "Available"
    ACCEPTED = "Accepted"
    IN_PROGRESS = "InProgress"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"
    EXPIRED = "Expired"


@dataclass
class GameState:
    """Company finances and progress counters."""

    current_credits: float = STARTING_CREDITS
    total_earnings: float = 0.0
    total_expenses: float = 0.0
    total_play_time: float = 0.0
    total_contracts: int = 0
    outstanding_loans: float = 0.0
    owned_licenses: List[str] = field(default_factory=list)
    company_name: str = ""
    company_reputation: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "current_credits": self.current_credits,
            "total_earnings": self.total_earnings,
            "total_expenses": self.total_expenses,
            "total_play_time": self.total_play_time,
            "total_contracts": self.total_contracts,
            "outstanding_loans": self.outstanding_loans,
            "owned_licenses": list(self.owned_licenses),
            "company_name": self.company_name,
            "company_reputation": self.company_reputation,
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "GameState":
        reputation = data.get("company_reputation")
        return GameState(
            current_credits=float(data.get("current_credits", 0.0)),
            total_earnings=float(data.get("total_earnings", 0.0)),
            total_expenses=float(data.get("total_expenses", 0.0)),
            total_play_time=float(data.get("total_play_time", 0.0)),
            total_contracts=int(data.get("total_contracts", 0)),
            outstanding_loans=float(data.get("outstanding_loans", 0.0)),
            owned_licenses=list(data.get("owned_licenses", [])),
            company_name=str(data.get("company_name", "")),
            company_reputation=float(reputation) if reputation is not None else None,
        )


@dataclass
class VehicleData:
    name: str
    fuel_capacity: float = 100.0
    weight_capacity: float = 1000.0
    purchase_price: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "fuel_capacity": self.fuel_capacity,
            "weight_capacity": self.weight_capacity,
            "purchase_price": self.purchase_price,
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "VehicleData":
        return VehicleData(
            name=str(data.get("name", "")),
            fuel_capacity=float(data.get("fuel_capacity", 100.0)),
            weight_capacity=float(data.get("weight_capacity", 1000.0)),
            purchase_price=float(data.get("purchase_price", 0.0)),
        )


@dataclass
class VehicleInstance:
    instance_id: str
    vehicle_data: Optional[VehicleData] = None
    current_city: str = ""
    destination_city: str = ""
    current_fuel: float = 0.0
    current_weight: float = 0.0
    wear_level: float = 0.0
    total_distance: float = 0.0
    purchase_date: Optional[datetime] = None
    last_maintenance: Optional[datetime] = None
    assigned_contract_id: Optional[str] = None
    total_revenue: float = 0.0
    total_expenses: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "instance_id": self.instance_id,
            "vehicle_data": self.vehicle_data.to_dict() if self.vehicle_data else None,
            "current_city": self.current_city,
            "destination_city": self.destination_city,
            "current_fuel": self.current_fuel,
            "current_weight": self.current_weight,
            "wear_level": self.wear_level,
            "total_distance": self.total_distance,
            "purchase_date": format_datetime(self.purchase_date),
            "last_maintenance": format_datetime(self.last_maintenance),
            "assigned_contract_id": self.assigned_contract_id,
            "total_revenue": self.total_revenue,
            "total_expenses": self.total_expenses,
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "VehicleInstance":
        vehicle_data = data.get("vehicle_data")
        return VehicleInstance(
            instance_id=str(data.get("instance_id") or ""),
            vehicle_data=VehicleData.from_dict(vehicle_data) if vehicle_data else None,
            current_city=str(data.get("current_city") or ""),
            destination_city=str(data.get("destination_city") or ""),
            current_fuel=float(data.get("current_fuel", 0.0)),
            current_weight=float(data.get("current_weight", 0.0)),
            wear_level=float(data.get("wear_level", 0.0)),
            total_distance=float(data.get("total_distance", 0.0)),
            purchase_date=parse_datetime(data.get("purchase_date")),
            last_maintenance=parse_datetime(data.get("last_maintenance")),
            assigned_contract_id=data.get("assigned_contract_id") or None,
            total_revenue=float(data.get("total_revenue", 0.0)),
            total_expenses=float(data.get("total_expenses", 0.0)),
        )


@dataclass
class ContractData:
    name: str
    base_reward: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "base_reward": self.base_reward}

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "ContractData":
        return ContractData(name=str(data.get("name", "")), base_reward=float(data.get("base_reward", 0.0)))


@dataclass
class ContractInstance:
    instance_id: str
    contract_data: Optional[ContractData] = None
    status: ContractStatus = ContractStatus.AVAILABLE
    acceptance_time: Optional[datetime] = None
    deadline: Optional[datetime] = None
    assigned_vehicle_id: Optional[str] = None
    progress_percentage: float = 0.0
    agreed_reward: float = 0.0
    actual_reward: float = 0.0
    penalty_amount: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "instance_id": self.instance_id,
            "contract_data": self.contract_data.to_dict() if self.contract_data else None,
            "status": self.status.value,
            "acceptance_time": format_datetime(self.acceptance_time),
            "deadline": format_datetime(self.deadline),
            "assigned_vehicle_id": self.assigned_vehicle_id,
            "progress_percentage": self.progress_percentage,
            "agreed_reward": self.agreed_reward,
            "actual_reward": self.actual_reward,
            "penalty_amount": self.penalty_amount,
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "ContractInstance":
        contract_data = data.get("contract_data")
        return ContractInstance(
            instance_id=str(data.get("instance_id") or ""),
            contract_data=ContractData.from_dict(contract_data) if contract_data else None,
            status=ContractStatus(data.get("status", ContractStatus.AVAILABLE.value)),
            acceptance_time=parse_datetime(data.get("acceptance_time")),
            deadline=parse_datetime(data.get("deadline")),
            assigned_vehicle_id=data.get("assigned_vehicle_id") or None,
            progress_percentage=float(data.get("progress_percentage", 0.0)),
            agreed_reward=float(data.get("agreed_reward", 0.0)),
            actual_reward=float(data.get("actual_reward", 0.0)),
            penalty_amount=float(data.get("penalty_amount", 0.0)),
        )


@dataclass
class CityData:
    name: str
    base_population: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "base_population": self.base_population}

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "CityData":
        return CityData(name=str(data.get("name", "")), base_population=int(data.get("base_population", 0)))


@dataclass
class CityInstance:
    instance_id: str
    city_data: Optional[CityData] = None
    is_discovered: bool = False
    discovery_date: Optional[datetime] = None
    current_fuel_price: float = 1.5
    economic_multiplier: float = 1.0
    current_population: int = 0
    player_reputation: float = 0.0
    traffic_level: float = 0.0

    @property
    def name(self) -> str:
        return self.city_data.name if self.city_data else ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "instance_id": self.instance_id,
            "city_data": self.city_data.to_dict() if self.city_data else None,
            "is_discovered": self.is_discovered,
            "discovery_date": format_datetime(self.discovery_date),
            "current_fuel_price": self.current_fuel_price,
            "economic_multiplier": self.economic_multiplier,
            "current_population": self.current_population,
            "player_reputation": self.player_reputation,
            "traffic_level": self.traffic_level,
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "CityInstance":
        city_data = data.get("city_data")
        return CityInstance(
            instance_id=str(data.get("instance_id") or ""),
            city_data=CityData.from_dict(city_data) if city_data else None,
            is_discovered=bool(data.get("is_discovered", False)),
            discovery_date=parse_datetime(data.get("discovery_date")),
            current_fuel_price=float(data.get("current_fuel_price", 1.5)),
            economic_multiplier=float(data.get("economic_multiplier", 1.0)),
            current_population=int(data.get("current_population", 0)),
            player_reputation=float(data.get("player_reputation", 0.0)),
            traffic_level=float(data.get("traffic_level", 0.0)),
        )


@dataclass
class SavePayload:
    """Full persisted game state for one slot.

    The core only looks inside the payload where validation, sanitizing and
    migration need to; everything else is carried through untouched.
    """

    save_name: str
    save_version: str
    creation_date: Optional[datetime] = field(default_factory=utc_now)
    last_modified: Optional[datetime] = field(default_factory=utc_now)
    game_state: Optional[GameState] = field(default_factory=GameState)
    player_progress: Optional[Dict[str, Any]] = field(default_factory=dict)
    settings: Optional[Dict[str, Any]] = field(default_factory=dict)
    vehicle_instances: List[VehicleInstance] = field(default_factory=list)
    contract_instances: List[ContractInstance] = field(default_factory=list)
    city_instances: List[CityInstance] = field(default_factory=list)
    fuel_prices: Dict[str, float] = field(default_factory=dict)
    discovery_states: Dict[str, bool] = field(default_factory=dict)
    checksum: str = ""
    requires_migration: bool = False

    @classmethod
    def create_default(cls, save_name: str, save_version: str) -> "SavePayload":
        now = utc_now()
        return cls(save_name=save_name, save_version=save_version, creation_date=now, last_modified=now)

    def copy(self) -> "SavePayload":
        return copy.deepcopy(self)

    def touch(self) -> None:
        now = utc_now()
        if self.creation_date is not None and now < self.creation_date:
            now = self.creation_date
        self.last_modified = now

    def to_dict(self) -> Dict[str, Any]:
        return {
            "save_name": self.save_name,
            "save_version": self.save_version,
            "creation_date": format_datetime(self.creation_date),
            "last_modified": format_datetime(self.last_modified),
            "game_state": self.game_state.to_dict() if self.game_state else None,
            "player_progress": self.player_progress,
            "settings": self.settings,
            "vehicle_instances": [v.to_dict() for v in self.vehicle_instances],
            "contract_instances": [c.to_dict() for c in self.contract_instances],
            "city_instances": [c.to_dict() for c in self.city_instances],
            "fuel_prices": dict(self.fuel_prices),
            "discovery_states": dict(self.discovery_states),
            "checksum": self.checksum,
            "requires_migration": self.requires_migration,
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "SavePayload":
        game_state = data.get("game_state")
        return SavePayload(
            save_name=str(data.get("save_name") or ""),
            save_version=str(data.get("save_version") or ""),
            creation_date=parse_datetime(data.get("creation_date")),
            last_modified=parse_datetime(data.get("last_modified")),
            game_state=GameState.from_dict(game_state) if game_state is not None else None,
            player_progress=data.get("player_progress"),
            settings=data.get("settings"),
            vehicle_instances=[VehicleInstance.from_dict(v) for v in data.get("vehicle_instances", [])],
            contract_instances=[ContractInstance.from_dict(c) for c in data.get("contract_instances", [])],
            city_instances=[CityInstance.from_dict(c) for c in data.get("city_instances", [])],
            fuel_prices={str(k): float(v) for k, v in (data.get("fuel_prices") or {}).items()},
            discovery_states={str(k): bool(v) for k, v in (data.get("discovery_states") or {}).items()},
            checksum=str(data.get("checksum") or ""),
            requires_migration=bool(data.get("requires_migration", False)),
        )


@dataclass
class SaveMetadata:
    """Summary written next to each payload so slot listings never decode full saves."""

    slot_name: str
    version: str
    creation_time: datetime
    last_modified: datetime
    play_time_hours: float = 0.0
    current_credits: float = 0.0
    total_contracts: int = 0
    checksum: str = ""

    def __post_init__(self) -> None:
        if self.last_modified < self.creation_time:
            self.last_modified = self.creation_time

    @classmethod
    def from_payload(cls, slot: str, payload: SavePayload) -> "SaveMetadata":
        created = payload.creation_date or utc_now()
        state = payload.game_state
        return cls(
            slot_name=slot,
            version=payload.save_version,
            creation_time=created,
            last_modified=payload.last_modified or created,
            play_time_hours=state.total_play_time if state else 0.0,
            current_credits=state.current_credits if state else 0.0,
            total_contracts=state.total_contracts if state else 0,
            checksum=payload.checksum,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "slot_name": self.slot_name,
            "version": self.version,
            "creation_time": format_datetime(self.creation_time),
            "last_modified": format_datetime(self.last_modified),
            "play_time_hours": self.play_time_hours,
            "current_credits": self.current_credits,
            "total_contracts": self.total_contracts,
            "checksum": self.checksum,
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "SaveMetadata":
        created = parse_datetime(data.get("creation_time")) or utc_now()
        return SaveMetadata(
            slot_name=str(data.get("slot_name") or ""),
            version=str(data.get("version") or ""),
            creation_time=created,
            last_modified=parse_datetime(data.get("last_modified")) or created,
            play_time_hours=float(data.get("play_time_hours", 0.0)),
            current_credits=float(data.get("current_credits", 0.0)),
            total_contracts=int(data.get("total_contracts", 0)),
            checksum=str(data.get("checksum") or ""),
        )
