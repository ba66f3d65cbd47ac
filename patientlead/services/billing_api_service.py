"""Business logic handlers for subscription billing APIs and the Stripe webhook."""

import logging

from patientlead.services import tool_catalog
from patientlead.services.entitlement_service import subscription_tier


BILLING_INTERVALS = {'monthly', 'annual'}
SUBSCRIPTION_UPSERT_EVENTS = {'customer.subscription.created', 'customer.subscription.updated'}
SUBSCRIPTION_DELETED_EVENT = 'customer.subscription.deleted'
INVOICE_EVENTS = {'invoice.payment_succeeded', 'invoice.payment_failed'}


def _error(app_ctx, message, status_code, code):
    return app_ctx.jsonify({'ok': False, 'error': message, 'code': code}), status_code


def _numeric(value):
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return value


def get_subscription(app_ctx, request):
    decoded_token = app_ctx.verify_firebase_token(request)
    if not decoded_token:
        return app_ctx.jsonify({
            'ok': True,
            'data': {
                'tier': tool_catalog.DEFAULT_TIER,
                'status': 'unauthenticated',
                'tools': tool_catalog.tools_for_tier(tool_catalog.DEFAULT_TIER),
            },
        })

    uid = decoded_token['uid']
    record = None
    if app_ctx.db is not None:
        try:
            record = app_ctx.users_repo.get_subscription(app_ctx.db, uid)
        except Exception as e:
            app_ctx.logger.error(f"Error fetching subscription for {uid}: {e}")
    record = record if isinstance(record, dict) else {}
    tier = tool_catalog.get_tier(subscription_tier(record, app_ctx.time.time())) or tool_catalog.TIERS_BY_NAME[tool_catalog.DEFAULT_TIER]
    return app_ctx.jsonify({
        'ok': True,
        'data': {
            'tier': tier.name,
            'display_name': tier.display_name,
            'status': str(record.get('status') or 'none'),
            'tools': tool_catalog.tools_for_tier(tier.name),
            'limits': tier.limits.to_dict(),
            'current_period_end': _numeric(record.get('current_period_end')),
            'cancel_at_period_end': bool(record.get('cancel_at_period_end', False)),
            'trial_end': _numeric(record.get('trial_end')),
        },
    })


def get_or_create_customer(app_ctx, uid, email):
    user = {}
    if app_ctx.db is not None:
        user = app_ctx.users_repo.get_doc(app_ctx.db, uid) or {}
    customer_id = str(user.get('stripe_customer_id', '') or '')
    if customer_id:
        return customer_id
    customer = app_ctx.stripe.Customer.create(
        email=email or None,
        metadata={'firebase_uid': uid},
    )
    if app_ctx.db is not None:
        app_ctx.users_repo.set_doc(app_ctx.db, uid, {'stripe_customer_id': customer.id}, merge=True)
    return customer.id


def create_checkout_session(app_ctx, request):
    decoded_token = app_ctx.verify_firebase_token(request)
    if not decoded_token:
        return _error(app_ctx, 'Please sign in to continue', 401, 'unauthenticated')

    uid = decoded_token['uid']
    email = decoded_token.get('email', '')
    allowed_checkout, retry_after = app_ctx.check_rate_limit(
        key=f"checkout:{app_ctx.normalize_rate_limit_key_part(uid, fallback='anon_uid')}",
        limit=app_ctx.CHECKOUT_RATE_LIMIT_MAX_REQUESTS,
        window_seconds=app_ctx.CHECKOUT_RATE_LIMIT_WINDOW_SECONDS,
    )
    if not allowed_checkout:
        app_ctx.log_rate_limit_hit('checkout', retry_after)
        return app_ctx.build_rate_limited_response(
            'Too many checkout attempts. Please wait before starting another checkout.',
            retry_after,
            code='rate_limited',
        )

    data = request.get_json(silent=True) or {}
    tier = tool_catalog.get_tier(str(data.get('tier', '') or '').strip())
    if tier is None or not tier.purchasable:
        return _error(app_ctx, 'Invalid plan selected', 400, 'invalid_input')
    interval = str(data.get('interval', 'monthly') or 'monthly').strip().lower()
    if interval not in BILLING_INTERVALS:
        return _error(app_ctx, 'Invalid billing interval', 400, 'invalid_input')
    price_id = app_ctx.STRIPE_PRICE_IDS.get(f'{tier.name}_{interval}', '')
    if not price_id:
        app_ctx.logger.warning(f"No Stripe price configured for {tier.name}_{interval}")
        return _error(app_ctx, 'This plan is not available for purchase right now.', 503, 'service_unavailable')

    host_url = request.host_url.rstrip('/')
    metadata = {'firebase_uid': uid, 'tier': tier.name, 'interval': interval}
    subscription_data = {'metadata': dict(metadata)}
    if tier.trial_days:
        subscription_data['trial_period_days'] = tier.trial_days
    try:
        customer_id = get_or_create_customer(app_ctx, uid, email)
        checkout_session = app_ctx.stripe.checkout.Session.create(
            mode='subscription',
            customer=customer_id,
            client_reference_id=uid,
            line_items=[{'price': price_id, 'quantity': 1}],
            success_url=app_ctx.CHECKOUT_SUCCESS_URL or (host_url + '/account?checkout=success&session_id={CHECKOUT_SESSION_ID}'),
            cancel_url=app_ctx.CHECKOUT_CANCEL_URL or (host_url + '/subscribe?checkout=cancelled'),
            allow_promotion_codes=True,
            billing_address_collection='required',
            subscription_data=subscription_data,
            metadata=metadata,
        )
        return app_ctx.jsonify({'ok': True, 'data': {'checkout_url': checkout_session.url, 'session_id': checkout_session.id}})
    except Exception as e:
        app_ctx.logger.error(f"Stripe checkout error: {e}")
        return _error(app_ctx, 'Could not create checkout session. Please try again.', 500, 'unknown_error')


def create_portal_session(app_ctx, request):
    decoded_token = app_ctx.verify_firebase_token(request)
    if not decoded_token:
        return _error(app_ctx, 'Please sign in to continue', 401, 'unauthenticated')
    if app_ctx.db is None:
        return _error(app_ctx, 'Billing is temporarily unavailable.', 503, 'service_unavailable')

    uid = decoded_token['uid']
    try:
        user = app_ctx.users_repo.get_doc(app_ctx.db, uid) or {}
        customer_id = str(user.get('stripe_customer_id', '') or '')
        if not customer_id:
            return _error(app_ctx, 'No billing account found for this user.', 400, 'invalid_input')
        portal_session = app_ctx.stripe.billing_portal.Session.create(
            customer=customer_id,
            return_url=app_ctx.PORTAL_RETURN_URL or (request.host_url.rstrip('/') + '/account'),
        )
        return app_ctx.jsonify({'ok': True, 'data': {'portal_url': portal_session.url}})
    except Exception as e:
        app_ctx.logger.error(f"Stripe portal error: {e}")
        return _error(app_ctx, 'Could not open the billing portal. Please try again.', 500, 'unknown_error')


def tier_for_price(price_ids, price_id):
    for key, value in (price_ids or {}).items():
        if value == price_id:
            return key.rsplit('_', 1)[0]
    return ''


def subscription_record_from_stripe(subscription, *, price_ids, now_ts):
    """Build the persisted billing record from a Stripe subscription object."""
    metadata = subscription.get('metadata') or {}
    items = (subscription.get('items') or {}).get('data') or []
    first_item = items[0] if items else {}
    period_end = subscription.get('current_period_end')
    if period_end is None:
        period_end = first_item.get('current_period_end')
    tier_name = str(metadata.get('tier', '') or '')
    if not tier_name:
        price = first_item.get('price') or {}
        tier_name = tier_for_price(price_ids, price.get('id', ''))
    return {
        'stripe_subscription_id': subscription.get('id', ''),
        'tier': tier_name or tool_catalog.DEFAULT_TIER,
        'status': str(subscription.get('status', '') or ''),
        'current_period_end': _numeric(period_end),
        'cancel_at_period_end': bool(subscription.get('cancel_at_period_end', False)),
        'trial_end': _numeric(subscription.get('trial_end')),
        'updated_at': now_ts,
    }


def resolve_event_uid(app_ctx, stripe_object):
    metadata = stripe_object.get('metadata') or {}
    uid = str(metadata.get('firebase_uid', '') or '')
    if uid:
        return uid
    return app_ctx.users_repo.find_uid_by_stripe_customer(app_ctx.db, stripe_object.get('customer', ''))


def sync_custom_claims(app_ctx, uid, tier_name):
    try:
        app_ctx.auth.set_custom_user_claims(uid, {'tier': tier_name})
    except Exception as e:
        app_ctx.logger.warning(f"Could not update custom claims for {uid}: {e}")


def handle_billing_event(app_ctx, event):
    """Apply one verified Stripe event; returns a short status string."""
    event_type = event.get('type', '')
    stripe_object = event['data']['object']
    now_ts = app_ctx.time.time()

    if event_type in SUBSCRIPTION_UPSERT_EVENTS | {SUBSCRIPTION_DELETED_EVENT} | INVOICE_EVENTS and app_ctx.db is None:
        app_ctx.logger.error(f"Stripe webhook {event_type} dropped: database unavailable")
        return 'database_unavailable'

    if event_type in SUBSCRIPTION_UPSERT_EVENTS:
        uid = resolve_event_uid(app_ctx, stripe_object)
        if not uid:
            app_ctx.logger.warning(f"Stripe subscription {stripe_object.get('id', '')} has no matching user")
            return 'unmatched'
        record = subscription_record_from_stripe(stripe_object, price_ids=app_ctx.STRIPE_PRICE_IDS, now_ts=now_ts)
        fields = {'subscription': record}
        if stripe_object.get('customer'):
            fields['stripe_customer_id'] = stripe_object.get('customer')
        app_ctx.users_repo.set_doc(app_ctx.db, uid, fields, merge=True)
        sync_custom_claims(app_ctx, uid, subscription_tier(record, now_ts))
        app_ctx.log_event(logging.INFO, 'subscription_updated', uid=uid, tier=record['tier'], status=record['status'])
        return 'subscription_updated'

    if event_type == SUBSCRIPTION_DELETED_EVENT:
        uid = resolve_event_uid(app_ctx, stripe_object)
        if not uid:
            app_ctx.logger.warning(f"Stripe subscription {stripe_object.get('id', '')} has no matching user")
            return 'unmatched'
        app_ctx.users_repo.set_doc(app_ctx.db, uid, {
            'subscription': {
                'stripe_subscription_id': stripe_object.get('id', ''),
                'tier': tool_catalog.DEFAULT_TIER,
                'status': 'canceled',
                'canceled_at': now_ts,
                'current_period_end': None,
                'updated_at': now_ts,
            },
        }, merge=True)
        sync_custom_claims(app_ctx, uid, tool_catalog.DEFAULT_TIER)
        app_ctx.log_event(logging.INFO, 'subscription_canceled', uid=uid)
        return 'subscription_canceled'

    if event_type in INVOICE_EVENTS:
        uid = app_ctx.users_repo.find_uid_by_stripe_customer(app_ctx.db, stripe_object.get('customer', '')) or ''
        app_ctx.events_repo.add_billing_event(app_ctx.db, {
            'uid': uid,
            'type': event_type,
            'invoice_id': stripe_object.get('id', ''),
            'subscription_id': stripe_object.get('subscription', '') or '',
            'amount_paid': stripe_object.get('amount_paid', 0) or 0,
            'amount_due': stripe_object.get('amount_due', 0) or 0,
            'currency': stripe_object.get('currency', '') or '',
            'created_at': now_ts,
        })
        if event_type == 'invoice.payment_failed':
            app_ctx.logger.warning(f"Invoice payment failed for customer {stripe_object.get('customer', '')}")
        return 'invoice_recorded'

    return 'ignored'


def stripe_webhook(app_ctx, request):
    payload = request.data
    sig_header = request.headers.get('Stripe-Signature', '')

    if app_ctx.STRIPE_WEBHOOK_SECRET:
        try:
            event = app_ctx.stripe.Webhook.construct_event(
                payload, sig_header, app_ctx.STRIPE_WEBHOOK_SECRET
            )
        except ValueError:
            app_ctx.logger.warning("Stripe webhook: Invalid payload")
            return 'Invalid payload', 400
        except app_ctx.stripe.error.SignatureVerificationError as e:
            app_ctx.logger.warning(f"Stripe webhook signature verification failed: {e}")
            return 'Invalid signature', 400
        except Exception as e:
            app_ctx.logger.error(f"Stripe webhook unexpected error: {e}")
            return 'Webhook processing error', 500
    else:
        app_ctx.logger.warning("Stripe webhook rejected: STRIPE_WEBHOOK_SECRET is not configured")
        return app_ctx.jsonify({'error': 'Webhook not configured'}), 500

    try:
        status = handle_billing_event(app_ctx, event)
    except Exception as e:
        app_ctx.logger.error(f"Stripe webhook handling error for {event.get('type', '')}: {e}")
        return 'Webhook processing error', 500
    if status == 'database_unavailable':
        return 'Webhook processing error', 500
    app_ctx.logger.info(f"Stripe webhook {event.get('type', '')}: {status}")
    return '', 200
