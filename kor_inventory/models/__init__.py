from kor_inventory.models.user import User, UserRole
from kor_inventory.models.product import Product, StockStatus, UNAVAILABLE_STATUSES
from kor_inventory.models.alert_config import AlertConfig, SummaryFrequency, ALERT_CONFIG_ID
from kor_inventory.models.alert_notification import (
    AlertNotification,
    NotificationType,
    NotificationStatus,
)
