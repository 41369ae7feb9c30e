"""Provider API key lookup: tenant's own key first, then the global one."""

import logging

from cryptography.fernet import InvalidToken
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.collectors.registry import PROVIDER_MAP, is_supported, key_field
from app.core.config import settings
from app.core.encryption import decrypt_value, key_fingerprint, reencrypt_value
from app.models.tenant import Tenant

logger = logging.getLogger(__name__)


def resolve_api_key(tenant: Tenant, provider: str) -> str:
    """Plain-text API key for *provider*, or "" when none is configured."""
    if not is_supported(provider):
        return ""
    field_name = key_field(provider)
    encrypted = getattr(tenant, field_name, None)
    if encrypted:
        try:
            key = decrypt_value(encrypted)
        except ValueError:
            logger.error("Cannot decrypt %s key for tenant %s: FERNET_KEY not configured", provider, tenant.id)
            key = ""
        if key:
            logger.debug("Tenant %s: own %s key %s", tenant.id, provider, key_fingerprint(key))
            return key
    key = getattr(settings, field_name, "") or ""
    if key:
        logger.debug("Tenant %s: global %s key %s", tenant.id, provider, key_fingerprint(key))
    return key


async def reencrypt_tenant_keys(db: AsyncSession) -> int:
    """Re-encrypt every stored provider key under the primary FERNET_KEY.

    Values no configured key can read are left untouched. The caller commits.
    Returns the number of values rewritten.
    """
    rewritten = 0
    tenants = (await db.execute(select(Tenant).order_by(Tenant.id))).scalars().all()
    for tenant in tenants:
        for provider in PROVIDER_MAP:
            field_name = key_field(provider)
            stored = getattr(tenant, field_name)
            if not stored:
                continue
            try:
                setattr(tenant, field_name, reencrypt_value(stored))
            except InvalidToken:
                logger.error("Tenant %s: stored %s key is unreadable, left as is", tenant.id, provider)
                continue
            rewritten += 1
    await db.flush()
    logger.info("Re-encrypted %d provider key(s) across %d tenant(s)", rewritten, len(tenants))
    return rewritten
