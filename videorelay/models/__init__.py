# Import all models so Base.metadata is populated for create_all.
from videorelay.models.user import User  # noqa: F401
from videorelay.models.session import Session  # noqa: F401
from videorelay.models.audit import AuditLogEvent  # noqa: F401
from videorelay.models.credential import AggregatorKey  # noqa: F401
from videorelay.models.upload import UploadRecord  # noqa: F401
from videorelay.models.quota import QuotaRecord  # noqa: F401
