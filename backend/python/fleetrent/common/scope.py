"""
Tenant scope resolved by the auth layer and passed into every core operation.

A scope is either unrestricted (may target any company explicitly) or
restricted to exactly one company. Core code never looks at user roles.
"""

from dataclasses import dataclass
from typing import Optional

from .exceptions import AccessDeniedError, ValidationError


@dataclass(frozen=True)
class Scope:
    company_id: Optional[str] = None
    unrestricted: bool = False

    @classmethod
    def for_company(cls, company_id: str) -> 'Scope':
        if not company_id:
            raise ValidationError('A company scope requires a company id')
        return cls(company_id=company_id)

    @classmethod
    def all_companies(cls) -> 'Scope':
        return cls(unrestricted=True)

    def resolve_company(self, requested_company_id: Optional[str] = None) -> str:
        """
        Determine the company a create-style operation acts on.

        Args:
            requested_company_id: Company named by the caller (required when unrestricted)

        Returns:
            str: Target company id

        Raises:
            ValidationError: Unrestricted scope without an explicit company
            AccessDeniedError: Restricted scope asking for another company
        """
        if self.unrestricted:
            if not requested_company_id:
                raise ValidationError('Company ID is required for an unrestricted scope')
            return requested_company_id

        if requested_company_id and requested_company_id != self.company_id:
            raise AccessDeniedError('Access denied to this company')
        return self.company_id

    def ensure_access(self, record_company_id: str) -> None:
        """Raise AccessDeniedError if a record lies outside this scope."""
        if self.unrestricted:
            return
        if record_company_id != self.company_id:
            raise AccessDeniedError('Access denied to this record')

    def filter_company(self, requested_company_id: Optional[str] = None) -> Optional[str]:
        """
        Company id a read query must be limited to.

        Returns None for an unrestricted scope with no explicit company,
        meaning "all companies".
        """
        if self.unrestricted:
            return requested_company_id or None
        if requested_company_id and requested_company_id != self.company_id:
            raise AccessDeniedError('Access denied to this company')
        return self.company_id

    def __str__(self):
        return 'unrestricted' if self.unrestricted else f"company:{self.company_id}"
