from achievement_tracker.repositories.achievements import (
    InMemoryAchievementsRepository,
    PostgresAchievementsRepository,
)
from achievement_tracker.repositories.identity import InMemoryIdentityRepository, PostgresIdentityRepository
from achievement_tracker.repositories.notifications import (
    InMemoryNotificationsRepository,
    PostgresNotificationsRepository,
)
from achievement_tracker.repositories.references import InMemoryReferencesRepository, PostgresReferencesRepository

__all__ = [
    "InMemoryAchievementsRepository",
    "PostgresAchievementsRepository",
    "InMemoryIdentityRepository",
    "PostgresIdentityRepository",
    "InMemoryNotificationsRepository",
    "PostgresNotificationsRepository",
    "InMemoryReferencesRepository",
    "PostgresReferencesRepository",
]
