from .db import db
from .user import User
from .security_event import SecurityEvent
