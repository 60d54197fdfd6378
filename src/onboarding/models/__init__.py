# onboarding/models/__init__.py

from .installation import (
    TenantInstallation,
    InstallationStatus
)
