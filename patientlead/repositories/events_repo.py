"""Firestore accessors for copilot events, billing events, vault episodes and rate-limit logs."""

from .document_store import add_document, query_recent_by_uid


COPILOT_EVENTS_COLLECTION = 'copilot_events'
BILLING_EVENTS_COLLECTION = 'billing_events'
VAULT_EPISODES_COLLECTION = 'vault_episodes'
RATE_LIMIT_LOGS_COLLECTION = 'rate_limit_logs'


def add_copilot_event(db, payload):
    return add_document(db, COPILOT_EVENTS_COLLECTION, payload)


def add_billing_event(db, payload):
    return add_document(db, BILLING_EVENTS_COLLECTION, payload)


def add_rate_limit_log(db, payload):
    return add_document(db, RATE_LIMIT_LOGS_COLLECTION, payload)


def add_vault_episode(db, payload):
    return add_document(db, VAULT_EPISODES_COLLECTION, payload)


def list_vault_episodes(db, uid, limit, firestore_module):
    return query_recent_by_uid(db, VAULT_EPISODES_COLLECTION, uid, limit, firestore_module)
