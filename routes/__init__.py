from .health import health_bp
from .security import security_bp
