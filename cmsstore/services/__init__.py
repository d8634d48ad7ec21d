from .crud import CRUDService, repository_operation, to_document  # noqa: F401
from .content import ContentRepository, slugify  # noqa: F401
from .users import UserRepository, check_password, hash_password  # noqa: F401
from .settings import DEFAULT_SETTINGS, SettingsRepository  # noqa: F401
from .sessions import SessionRepository  # noqa: F401
from .media import MediaRepository  # noqa: F401
from .analytics import AnalyticsRepository  # noqa: F401
from .validation import validate_document, validate_setting_value  # noqa: F401
