"""
Cooperative enumerations.

Defines member and cooperative-model types shared by settings and dividends.
"""

import enum


class MemberType(str, enum.Enum):
    """Kind of cooperative member receiving dividends."""
    CUSTOMER = "customer"  # Passenger members, patronage = trips taken
    DRIVER = "driver"  # Worker members, patronage = hours worked


class CooperativeModel(str, enum.Enum):
    """
    Cooperative model of a tenant.

    Models:
        WORKER: Drivers are the members
        PASSENGER: Customers are the members
        HYBRID: Both, pool split by a configured customer/driver ratio
    """
    WORKER = "worker"
    PASSENGER = "passenger"
    HYBRID = "hybrid"


class SettlementFrequency(str, enum.Enum):
    """How often a tenant's surplus is settled."""
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
