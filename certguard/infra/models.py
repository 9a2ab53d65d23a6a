"""Central registry for SQLAlchemy models with string-based relationships.

Importing this module loads every ORM class so that mapper configuration and
``Base.metadata`` see the full schema regardless of which domain module was
imported first.
"""

from certguard.domain.compliance import db_models as compliance_db_models  # noqa: F401
from certguard.domain.dispatch import db_models as dispatch_db_models  # noqa: F401
from certguard.domain.outbox import db_models as outbox_db_models  # noqa: F401
