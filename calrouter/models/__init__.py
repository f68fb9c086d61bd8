"""Database models — re-exports all models.

Import from here:  from calrouter.models import User, Endpoint, DeliveryLog
Or from submodules: from calrouter.models.auth import User
"""

from .base import Base  # noqa: F401

# Accounts & subscriptions
from .auth import User  # noqa: F401

# Webhook intake routes
from .endpoints import Endpoint  # noqa: F401

# Append-only delivery audit trail
from .delivery import DeliveryLog  # noqa: F401
