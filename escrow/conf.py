"""
Sweep configuration read from Django settings.
"""
from dataclasses import dataclass

from django.conf import settings

HOUR_MS = 3600 * 1000


@dataclass
class AutoCancelConfig:
    hours: float
    max_per_run: int

    @property
    def enabled(self) -> bool:
        return self.hours > 0

    @property
    def threshold_ms(self) -> int:
        return int(self.hours * HOUR_MS)


@dataclass
class AutoCompleteConfig:
    hours: float
    max_per_run: int

    @property
    def enabled(self) -> bool:
        return self.hours > 0 and self.max_per_run > 0

    @property
    def threshold_ms(self) -> int:
        return int(self.hours * HOUR_MS)


@dataclass
class AutoFinalizeConfig:
    max_per_run: int

    @property
    def enabled(self) -> bool:
        return self.max_per_run > 0


def get_auto_cancel_config() -> AutoCancelConfig:
    return AutoCancelConfig(
        hours=getattr(settings, 'CHAIN_ORDER_AUTO_CANCEL_HOURS', 0),
        max_per_run=getattr(settings, 'CHAIN_ORDER_AUTO_CANCEL_MAX', 10),
    )


def get_auto_complete_config() -> AutoCompleteConfig:
    return AutoCompleteConfig(
        hours=getattr(settings, 'CHAIN_ORDER_AUTO_COMPLETE_HOURS', 24),
        max_per_run=getattr(settings, 'CHAIN_ORDER_AUTO_COMPLETE_MAX', 10),
    )


def get_auto_finalize_config() -> AutoFinalizeConfig:
    return AutoFinalizeConfig(
        max_per_run=getattr(settings, 'CHAIN_ORDER_AUTO_FINALIZE_MAX', 10),
    )


@dataclass
class MissingCleanupConfig:
    enabled: bool
    max_age_hours: float
    max_delete: int

    @property
    def runnable(self) -> bool:
        """Unattended cleanup needs both the switch and an age floor."""
        return self.enabled and self.max_age_hours > 0


def get_missing_cleanup_config() -> MissingCleanupConfig:
    return MissingCleanupConfig(
        enabled=getattr(settings, 'CHAIN_MISSING_CLEANUP_ENABLED', False),
        max_age_hours=getattr(settings, 'CHAIN_MISSING_CLEANUP_MAX_AGE_HOURS', 0),
        max_delete=getattr(settings, 'CHAIN_MISSING_CLEANUP_MAX', 500),
    )
