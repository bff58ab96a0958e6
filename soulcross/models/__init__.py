# Models package — import all models here so Alembic can discover them.

from soulcross.models.reading import ReadingRequest  # noqa: F401
from soulcross.models.order import Order  # noqa: F401
from soulcross.models.audit import AuditEvent  # noqa: F401
from soulcross.models.stripe_event import StripeEvent  # noqa: F401
