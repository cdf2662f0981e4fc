"""Domain modules package."""

from mentorhub.modules.audit import models as audit_models  # noqa: F401
from mentorhub.modules.booking import models as booking_models  # noqa: F401
from mentorhub.modules.payments import models as payments_models  # noqa: F401
from mentorhub.modules.scheduling import models as scheduling_models  # noqa: F401
