"""Firestore accessors for users collection."""

from .document_store import apply_where, doc_ref as _doc_ref, get_document, set_document


USERS_COLLECTION = 'users'


def doc_ref(db, uid):
    return _doc_ref(db, USERS_COLLECTION, uid)


def get_doc(db, uid):
    return get_document(db, USERS_COLLECTION, uid)


def set_doc(db, uid, data, merge=False):
    return set_document(db, USERS_COLLECTION, uid, data, merge=merge)


def get_subscription(db, uid):
    user = get_doc(db, uid) or {}
    return user.get('subscription')


def find_uid_by_stripe_customer(db, customer_id):
    if not customer_id:
        return None
    docs = list(apply_where(db.collection(USERS_COLLECTION), 'stripe_customer_id', '==', customer_id).limit(1).stream())
    if not docs:
        return None
    return docs[0].id
