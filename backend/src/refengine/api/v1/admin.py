"""Admin API v1 endpoints."""

from fastapi import APIRouter, Depends, Query

from refengine.api.deps import get_database
from refengine.auth import Principal, require_admin
from refengine.storage.db import Database
from refengine.storage.models import CommissionSource
from refengine.storage.repo import CommissionRepository

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get("/commissions")
def list_commissions(
    source_type: CommissionSource | None = None,
    limit: int = Query(default=100, ge=1, le=500),
    principal: Principal = Depends(require_admin),
    database: Database = Depends(get_database),
):
    """Platform commission ledger with totals per source."""
    with database.session() as session:
        repo = CommissionRepository(session)
        records = repo.list_recent(source_type.value if source_type else None, limit)
        totals = repo.total_by_source()
        return {
            "commissions": [
                {
                    "id": r.id,
                    "source_type": r.source_type,
                    "reference_id": r.reference_id,
                    "amount": str(r.amount),
                    "beneficiary_email": r.beneficiary_email,
                    "status": r.status,
                    "created_at": r.created_at.isoformat(),
                }
                for r in records
            ],
            "totals": {source: str(total) for source, total in totals.items()},
        }
