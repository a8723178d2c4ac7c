"""
Tenant ruleset repository.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from docsyphon.db.repositories.base import BaseRepository
from docsyphon.models.db import TenantRuleset
from docsyphon.utils.time import utc_now


class RulesetRepository(BaseRepository[TenantRuleset]):
    """Repository for TenantRuleset model."""

    def __init__(self, session: Session):
        super().__init__(TenantRuleset, session)

    def get_for_tenant(self, tenant_id: str) -> Optional[TenantRuleset]:
        return (
            self.session.query(TenantRuleset)
            .filter(TenantRuleset.tenant_id == tenant_id)
            .first()
        )

    def save(
        self, tenant_id: str, content: str, updated_at: Optional[datetime] = None
    ) -> TenantRuleset:
        """Create or replace a tenant's ruleset, bumping its version."""
        updated_at = updated_at or utc_now()
        ruleset = self.get_for_tenant(tenant_id)
        if ruleset is None:
            return self.create(
                tenant_id=tenant_id, content=content, updated_at=updated_at
            )
        ruleset.content = content
        ruleset.updated_at = updated_at
        self.session.flush()
        return ruleset
