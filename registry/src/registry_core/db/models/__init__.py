"""Database model package."""

from .activity import ActivityLogRecord
from .package import PackageRecord, PackageVersionRecord
from .site_config import SiteConfigRecord
from .token import AuthTokenRecord
from .upload_session import UploadSessionRecord
from .user import AdminUserRecord, UserRecord, UserSessionRecord
from .webhook import WebhookDeliveryRecord, WebhookRecord

__all__ = [
    "ActivityLogRecord",
    "AdminUserRecord",
    "AuthTokenRecord",
    "PackageRecord",
    "PackageVersionRecord",
    "SiteConfigRecord",
    "UploadSessionRecord",
    "UserRecord",
    "UserSessionRecord",
    "WebhookDeliveryRecord",
    "WebhookRecord",
]
