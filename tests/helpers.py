"""
Общие данные для тестов: момент создания заявки и участники.
"""

from datetime import datetime, timezone

from lifecycle.models.event import Actor, Role

T0 = datetime(2025, 3, 1, 9, 0, tzinfo=timezone.utc)

TENANT = Actor(id="tenant-1", role=Role.TENANT)
OTHER_TENANT = Actor(id="tenant-2", role=Role.TENANT)
LANDLORD = Actor(id="landlord-1", role=Role.LANDLORD)
OTHER_LANDLORD = Actor(id="landlord-2", role=Role.LANDLORD)
SUPER_ADMIN = Actor(id="admin-1", role=Role.SUPER_ADMIN)
CARETAKER_X = Actor(id="caretaker-x", role=Role.CARETAKER)
CARETAKER_Y = Actor(id="caretaker-y", role=Role.CARETAKER)
