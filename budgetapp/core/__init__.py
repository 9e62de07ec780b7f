from budgetapp.core.config import settings
from budgetapp.core.database import get_db, Base, get_db_session
from budgetapp.core.security import (
    verify_password,
    get_password_hash,
    create_access_token,
    decode_token,
    verify_session_token,
)
