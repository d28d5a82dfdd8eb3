"""
Application state: actions, reducers, persistence, effects and store assembly.

The persisted part of the tree is serialized as a JSON envelope and kept in
whichever storage engine the platform resolver picks (see `storage`).
"""

from .actions import REHYDRATE, intent_types, requested, split_intent
from .effects import EffectContext, EffectCoordinator, intent_worker
from .models import Action, PersistConfig, StoreConfig
from .persistence import Persistor, RehydrationDeserializeError, RehydrationResult, persist_reducer
from .sagas import patients_saga, root_saga
from .slices import audit_reducer, config_reducer, default_reducers, patients_reducer
from .store import Store, StoreHandle, combine_reducers, create_store

__all__ = [
    "Action",
    "PersistConfig",
    "StoreConfig",
    "REHYDRATE",
    "intent_types",
    "requested",
    "split_intent",
    "EffectContext",
    "EffectCoordinator",
    "intent_worker",
    "Persistor",
    "RehydrationDeserializeError",
    "RehydrationResult",
    "persist_reducer",
    "patients_saga",
    "root_saga",
    "audit_reducer",
    "config_reducer",
    "default_reducers",
    "patients_reducer",
    "Store",
    "StoreHandle",
    "combine_reducers",
    "create_store",
]
