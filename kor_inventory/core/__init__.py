from kor_inventory.core.config import settings
from kor_inventory.core.database import get_db, Base, get_db_session
from kor_inventory.core.security import (
    verify_password,
    get_password_hash,
    create_access_token,
    decode_token,
)
