"""Firestore accessors for tool usage logs and usage window counters."""

from .document_store import add_document, count_by_uid_since, query_recent_by_uid


TOOL_USAGE_COLLECTION = 'tool_usage'
USAGE_WINDOW_COLLECTION = 'usage_windows'


def window_doc_ref(db, collection_name, window_id):
    return db.collection(collection_name).document(window_id)


def add_tool_usage(db, payload):
    return add_document(db, TOOL_USAGE_COLLECTION, payload)


def list_recent_tool_usage(db, uid, limit, firestore_module):
    return query_recent_by_uid(db, TOOL_USAGE_COLLECTION, uid, limit, firestore_module, order_field='timestamp')


def count_tool_usage_since(db, uid, since_ts):
    return count_by_uid_since(db, TOOL_USAGE_COLLECTION, uid, 'timestamp', since_ts)
