from .db import (
    Base,
    get_engine,
    get_session,
    dispose_engine,
    create_all,
)  # noqa: F401
from .store import SqlReminderStore, SqlTimeCache  # noqa: F401
