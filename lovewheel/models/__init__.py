# Models package: import all models here so Alembic can discover them.

from lovewheel.models.gift import Gift  # noqa: F401
from lovewheel.models.stripe_event import StripeEvent  # noqa: F401
from lovewheel.models.audit import AuditEvent  # noqa: F401
