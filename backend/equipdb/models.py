# backend/equipdb/models.py
"""
Import ORM models from each app so that Base.metadata.create_all() sees every
table. The model classes themselves live in equipdb/apps/*/models.py.
"""

from .apps.equipment import models as equipment_models      # equipment / inspections / schedules / documents
from .apps.compliance import models as compliance_models    # load tests, calibrations, credentials, PM, standards
from .apps.audit import models as audit_models              # audit trail

__all__ = [
    "equipment_models",
    "compliance_models",
    "audit_models",
]
