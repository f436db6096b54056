from vetconnect.core.config import settings
from vetconnect.core.database import Base, get_db, engine, SessionLocal
from vetconnect.core.security import (
    verify_password,
    get_password_hash,
    TokenCodec,
)
from vetconnect.core.session import Principal, SessionValidator
