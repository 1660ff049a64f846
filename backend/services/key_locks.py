"""
RFP CRM - Keyed locks

Un asyncio.Lock par clé (lead, famille de documents...). Les verrous
sont libérés du dict quand plus personne ne les attend.
Protection intra-process uniquement: entre process, ce sont l'index
unique files(entity_type, entity_id, name) et le compteur RFP atomique
qui tranchent.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import Dict, Hashable, Tuple


class KeyedLocks:
    def __init__(self):
        self._locks: Dict[Hashable, Tuple[asyncio.Lock, int]] = {}

    @asynccontextmanager
    async def hold(self, key: Hashable):
        lock, waiters = self._locks.get(key, (None, 0))
        if lock is None:
            lock = asyncio.Lock()
        self._locks[key] = (lock, waiters + 1)
        try:
            async with lock:
                yield
        finally:
            lock, waiters = self._locks[key]
            if waiters <= 1:
                del self._locks[key]
            else:
                self._locks[key] = (lock, waiters - 1)

    def __len__(self) -> int:
        return len(self._locks)


# Upsert RFP, une clé par lead (ou customer + survey)
rfp_locks = KeyedLocks()

# Versioning des fichiers, une clé par (entity_type, entity_id, famille)
file_family_locks = KeyedLocks()
