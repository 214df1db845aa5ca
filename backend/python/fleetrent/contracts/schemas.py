"""
Request objects for the contract lifecycle.

Both accept snake_case keys and the camelCase keys sent by the dashboard.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any, Dict, Optional

from ..common.data_utils import ZERO, convert_to_date, to_money
from ..common.exceptions import ValidationError
from ..common.models import ContractStatus


def _pick(data: Dict[str, Any], key: str, alias: str, default: Any = None) -> Any:
    if key in data:
        return data[key]
    return data.get(alias, default)


def _required_str(data: Dict[str, Any], key: str, alias: str) -> str:
    value = _pick(data, key, alias)
    if not value or not isinstance(value, str):
        raise ValidationError(f"{key} is required")
    return value


@dataclass
class CreateContractRequest:
    driver_id: str
    vehicle_id: str
    daily_rate: Decimal
    start_date: date
    deposit: Decimal = ZERO
    end_date: Optional[date] = None
    description: Optional[str] = None
    company_id: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CreateContractRequest':
        """
        Parse and validate a create-contract payload.

        Args:
            data: Request body

        Returns:
            CreateContractRequest: Validated request

        Raises:
            ValidationError: Missing field, non-positive rate, negative deposit or bad date
        """
        if not isinstance(data, dict):
            raise ValidationError('Request body must be a JSON object')

        daily_rate = to_money(_pick(data, 'daily_rate', 'dailyRate'))
        if daily_rate <= 0:
            raise ValidationError('daily_rate must be positive')

        deposit_raw = _pick(data, 'deposit', 'deposit')
        deposit = to_money(deposit_raw) if deposit_raw not in (None, '') else ZERO
        if deposit < 0:
            raise ValidationError('deposit cannot be negative')

        start_date = convert_to_date(_pick(data, 'start_date', 'startDate'), 'start_date')
        if start_date is None:
            raise ValidationError('start_date is required')

        return cls(
            driver_id=_required_str(data, 'driver_id', 'driverId'),
            vehicle_id=_required_str(data, 'vehicle_id', 'vehicleId'),
            daily_rate=daily_rate,
            deposit=deposit,
            start_date=start_date,
            end_date=convert_to_date(_pick(data, 'end_date', 'endDate'), 'end_date'),
            description=_pick(data, 'description', 'description'),
            company_id=_pick(data, 'company_id', 'companyId'),
        )


@dataclass
class StatusChangeRequest:
    status: ContractStatus
    reason: Optional[str] = None
    end_date: Optional[date] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'StatusChangeRequest':
        """Parse a status change payload; status must be a known ContractStatus."""
        if not isinstance(data, dict):
            raise ValidationError('Request body must be a JSON object')

        raw_status = data.get('status')
        try:
            status = ContractStatus(str(raw_status).upper())
        except ValueError:
            raise ValidationError(f"Invalid contract status: {raw_status}")

        return cls(
            status=status,
            reason=data.get('reason'),
            end_date=convert_to_date(_pick(data, 'end_date', 'endDate'), 'end_date'),
        )


@dataclass
class UpdateContractRequest:
    end_date: Optional[date] = None
    description: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'UpdateContractRequest':
        """Parse an edit payload. Only end date and description may change."""
        if not isinstance(data, dict):
            raise ValidationError('Request body must be a JSON object')

        locked = sorted(
            key for key in data
            if key in ('status', 'driver_id', 'driverId', 'vehicle_id', 'vehicleId', 'company_id',
                       'companyId', 'daily_rate', 'dailyRate', 'deposit', 'start_date', 'startDate')
        )
        if locked:
            raise ValidationError(f"Fields cannot be edited: {', '.join(locked)}")

        request = cls(
            end_date=convert_to_date(_pick(data, 'end_date', 'endDate'), 'end_date'),
            description=_pick(data, 'description', 'description'),
        )
        if request.end_date is None and request.description is None:
            raise ValidationError('Nothing to update')
        return request


@dataclass
class ContractFilters:
    """Optional narrowing for contract listings."""
    status: Optional[ContractStatus] = None
    driver_id: Optional[str] = None
    vehicle_id: Optional[str] = None
    company_id: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ContractFilters':
        raw_status = data.get('status')
        status = None
        if raw_status:
            try:
                status = ContractStatus(str(raw_status).upper())
            except ValueError:
                raise ValidationError(f"Invalid contract status: {raw_status}")
        return cls(
            status=status,
            driver_id=_pick(data, 'driver_id', 'driverId'),
            vehicle_id=_pick(data, 'vehicle_id', 'vehicleId'),
            company_id=_pick(data, 'company_id', 'companyId'),
        )
