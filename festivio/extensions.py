from flask_limiter import Limiter
from flask_limiter.util import get_remote_address

# Storage is configured in create_app() via limiter.init_app(...).
limiter = Limiter(key_func=get_remote_address)
