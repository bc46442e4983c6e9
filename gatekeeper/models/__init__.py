from gatekeeper.models.audit import AuditEvent  # noqa: F401
from gatekeeper.models.platform_settings import PlatformSetting  # noqa: F401
from gatekeeper.models.subscription import PlanTier, Subscription  # noqa: F401
