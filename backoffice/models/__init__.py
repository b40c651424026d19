from backoffice.models.user import User, Profile, Role, AccountStatus
from backoffice.models.product import Product, UserProductAccess
from backoffice.models.offer import Offer
from backoffice.models.invoice import Invoice, InvoiceItem, InvoiceStatus
from backoffice.models.app_setting import AppSetting
from backoffice.models.activity_log import ActivityLog
from backoffice.models.invitation import Invitation

__all__ = [
    "User",
    "Profile",
    "Role",
    "AccountStatus",
    "Product",
    "UserProductAccess",
    "Offer",
    "Invoice",
    "InvoiceItem",
    "InvoiceStatus",
    "AppSetting",
    "ActivityLog",
    "Invitation",
]
