"""
Audit Logging Service - append-only audit trail for payment and servicing actions
"""

import json
import logging
from typing import Any, Dict, Optional

from .payment_utils import utcnow

log = logging.getLogger(__name__)


class AuditService:
    """Audit trail written to the application log"""

    @staticmethod
    async def log_action(
        action: str,
        entity_type: str,
        entity_id: Optional[Any],
        tenant_id: Optional[str] = None,
        old_value: Optional[Dict] = None,
        new_value: Optional[Dict] = None,
        reason: Optional[str] = None,
        api_endpoint: Optional[str] = None
    ) -> bool:
        """
        Log audit event (append-only)

        Actions: ingest, post, reject, reverse, import, match, cycle
        Entity types: payment, batch, cycle_run, bank_statement, recon_match
        """
        try:
            audit_entry = {
                "timestamp": utcnow().isoformat(),
                "action": action,
                "entity_type": entity_type,
                "entity_id": entity_id,
                "tenant_id": tenant_id,
                "old_value": old_value,
                "new_value": new_value,
                "reason": reason,
                "api_endpoint": api_endpoint
            }

            log.info(f"AUDIT: {json.dumps(audit_entry, default=str)}")
            return True
        except Exception as e:
            log.error(f"Error logging audit: {str(e)}")
            return False

    @staticmethod
    async def log_payment_action(
        action: str,
        payment_id: Optional[int],
        tenant_id: str,
        details: Optional[Dict] = None,
        reason: Optional[str] = None
    ) -> bool:
        """Log payment lifecycle actions"""
        return await AuditService.log_action(
            action=action,
            entity_type="payment",
            entity_id=payment_id,
            tenant_id=tenant_id,
            new_value=details,
            reason=reason
        )

    @staticmethod
    async def log_servicing_action(
        action: str,
        entity_type: str,
        entity_id: Optional[Any],
        tenant_id: str,
        details: Optional[Dict] = None
    ) -> bool:
        """Log batch, cycle and reconciliation actions"""
        return await AuditService.log_action(
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            tenant_id=tenant_id,
            new_value=details
        )
