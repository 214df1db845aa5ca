"""Contract Lifecycle Manager."""

from .schemas import ContractFilters, CreateContractRequest, StatusChangeRequest, UpdateContractRequest
from .service import ContractService

__all__ = [
    'ContractService', 'CreateContractRequest', 'StatusChangeRequest', 'UpdateContractRequest',
    'ContractFilters',
]
