"""Explicit driver balance and deposit adjustments."""

from .service import DepositOperation, DriverAccountService

__all__ = ['DriverAccountService', 'DepositOperation']
