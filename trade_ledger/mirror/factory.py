from typing import Optional

from trade_ledger import config
from trade_ledger.mirror.client import SupabaseMirrorStore
from trade_ledger.mirror.store import MirrorStore, SqlMirrorStore
from trade_ledger.logger import logger


async def build_mirror_store(backend: Optional[str] = None) -> Optional[MirrorStore]:
    """The configured mirror backend, or None when mirroring is disabled."""
    backend = (backend or config.MIRROR_BACKEND).lower()

    if backend == 'disabled':
        logger.info('Mirror store disabled, sync jobs stay queued')
        return None

    if backend == 'sql':
        store = SqlMirrorStore.from_url(config.MIRROR_DATABASE_URL, echo=config.DB_ECHO)
        if config.AUTO_CREATE_TABLES:
            await store.create_tables()
        return store

    if backend == 'supabase':
        logger.info(f'Mirror store: Supabase at {config.SUPABASE_URL}')
        return SupabaseMirrorStore(config.SUPABASE_URL, config.SUPABASE_SERVICE_ROLE_KEY)

    raise ValueError(f'Unknown MIRROR_BACKEND {backend!r}, expected disabled, sql or supabase')
