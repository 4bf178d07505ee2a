from lexintake.repositories.base import PERMISSIONS_DOMAIN, OperationNotSupported, PermissionsRepository
from lexintake.repositories.resilient import DomainSwitch, ResilientRepository
from lexintake.repositories.sql import SqlPermissionsRepository
from lexintake.repositories.tabular import TabularPermissionsRepository

__all__ = [
    "PERMISSIONS_DOMAIN",
    "DomainSwitch",
    "OperationNotSupported",
    "PermissionsRepository",
    "ResilientRepository",
    "SqlPermissionsRepository",
    "TabularPermissionsRepository",
]
