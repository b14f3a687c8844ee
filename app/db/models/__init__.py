from .common import *  # noqa
from .materials import *  # noqa
from .bom import *  # noqa
from .production import *  # noqa
from .counters import *  # noqa
from .quality import *  # noqa
from .quarantine import *  # noqa
from .security_audit import *  # noqa

# Transactional outbox
from app.events.outbox import *  # noqa
