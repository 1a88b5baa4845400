"""Storage backends for settlement data."""

from dk_settlement.storage.base import ProcessSource, ReferenceDataSource, SettlementStore
from dk_settlement.storage.locks import KeyedLock
from dk_settlement.storage.processes import SupabaseProcessRepository
from dk_settlement.storage.reference import SupabaseReferenceData
from dk_settlement.storage.supabase import SupabaseSettlementStore, create_supabase_client

__all__ = [
    "KeyedLock",
    "ProcessSource",
    "ReferenceDataSource",
    "SettlementStore",
    "SupabaseProcessRepository",
    "SupabaseReferenceData",
    "SupabaseSettlementStore",
    "create_supabase_client",
]
