from flask import Blueprint

billing_bp = Blueprint('billing_api', __name__)


@billing_bp.route('/api/subscription', methods=['GET'])
def get_subscription():
    from patientlead import runtime

    return runtime.get_subscription_impl()


@billing_bp.route('/api/create-checkout-session', methods=['POST'])
def create_checkout_session():
    from patientlead import runtime

    return runtime.create_checkout_session_impl()


@billing_bp.route('/api/create-portal-session', methods=['POST'])
def create_portal_session():
    from patientlead import runtime

    return runtime.create_portal_session_impl()


@billing_bp.route('/api/stripe-webhook', methods=['POST'])
def stripe_webhook():
    from patientlead import runtime

    return runtime.stripe_webhook_impl()
