"""Generic Firestore document accessors and shared query helpers.

Filters use the keyword ``FieldFilter`` form to avoid positional-argument
warnings in newer Firestore SDK versions, falling back to positional style for
simple test doubles that do not support keyword filters.
"""

from google.cloud.firestore_v1.base_query import FieldFilter


def apply_where(query, field_path, op_string, value):
    try:
        return query.where(filter=FieldFilter(field_path, op_string, value))
    except TypeError:
        return query.where(field_path, op_string, value)


def doc_ref(db, collection_name, doc_id):
    return db.collection(collection_name).document(doc_id)


def get_document(db, collection_name, doc_id):
    snapshot = doc_ref(db, collection_name, doc_id).get()
    if not snapshot.exists:
        return None
    return snapshot.to_dict() or {}


def set_document(db, collection_name, doc_id, fields, merge=False):
    return doc_ref(db, collection_name, doc_id).set(fields, merge=merge)


def add_document(db, collection_name, fields):
    """Add ``fields`` as a new document and return its generated id."""
    result = db.collection(collection_name).add(fields)
    ref = result[1] if isinstance(result, tuple) and len(result) > 1 else result
    return str(getattr(ref, 'id', '') or '')


def query_recent_by_uid(db, collection_name, uid, limit, firestore_module=None, order_field='created_at'):
    query = apply_where(db.collection(collection_name), 'uid', '==', uid)
    if firestore_module is not None:
        query = query.order_by(order_field, direction=firestore_module.Query.DESCENDING)
    if isinstance(limit, int) and limit > 0:
        query = query.limit(limit)
    return list(query.stream())


def count_by_uid_since(db, collection_name, uid, timestamp_field, since_ts):
    query = apply_where(db.collection(collection_name), 'uid', '==', uid)
    query = apply_where(query, timestamp_field, '>=', since_ts)
    agg = query.count().get()
    if agg:
        return int(agg[0][0].value)
    return 0
