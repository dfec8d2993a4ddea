"""Core components: state model, state store and the provider adapter interface."""

from infra_reconciler.core.provider import ProviderAdapter
from infra_reconciler.core.state import State, StateEntry
from infra_reconciler.core.store import StateSnapshot, StateStore

__all__ = ["ProviderAdapter", "State", "StateEntry", "StateSnapshot", "StateStore"]
