# backend/equipdb/__init__.py
"""
equipdb: regulated-equipment compliance backend.

- apps.gateway    : secure operation gateway (validators, registry, dispatcher).
- apps.equipment  : equipment master, inspections, documents.
- apps.compliance : load tests, calibrations, credentials, certificates, PM,
                    and the compliance scheduler.
- apps.audit      : append-only audit trail.

Model registration for create_all lives in equipdb.models, so importing the
package never touches the database configuration.
"""
