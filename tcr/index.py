from __future__ import annotations

import logging
from typing import Any

from .models import CONFIG_MAP, ConfigMap
from .store import CallContext, Store

logger = logging.getLogger(__name__)


OWNER_UID_INDEX = "ownerReferences.uid"


def owner_uid_indexer(obj: Any) -> list[str]:
    """Index values for an object: the uid of its first owner reference, if any.

    Children written by this system carry exactly one owner reference.
    """
    for ref in obj.metadata.owner_references:
        return [ref.uid]
    return []


def register_owner_index(store: Store) -> None:
    """Register the ownership index for ConfigMaps.

    Must run once per store, before any watch is started. A second call raises
    ``IndexerConflict``.
    """
    store.index_field(CONFIG_MAP, OWNER_UID_INDEX, owner_uid_indexer)
    logger.info("Registered %s index for %s", OWNER_UID_INDEX, CONFIG_MAP)


def owned_children(store: Store, namespace: str, owner_uid: str, ctx: CallContext | None = None) -> list[ConfigMap]:
    """ConfigMaps in ``namespace`` whose first owner reference is ``owner_uid``."""
    if store.has_index(CONFIG_MAP, OWNER_UID_INDEX):
        return store.list(CONFIG_MAP, namespace, index=(OWNER_UID_INDEX, owner_uid), ctx=ctx)
    # Same filter as the index, applied to a plain namespace listing.
    return [cm for cm in store.list(CONFIG_MAP, namespace, ctx=ctx) if owner_uid in owner_uid_indexer(cm)]
