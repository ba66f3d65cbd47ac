from flask import Blueprint

account_bp = Blueprint('account_api', __name__)


@account_bp.route('/api/usage', methods=['GET'])
def get_usage_summary():
    from patientlead import runtime

    return runtime.get_usage_summary_impl()


@account_bp.route('/api/usage/history', methods=['GET'])
def get_usage_history():
    from patientlead import runtime

    return runtime.get_usage_history_impl()


@account_bp.route('/api/vault/episodes', methods=['POST'])
def save_vault_episode():
    from patientlead import runtime

    return runtime.save_vault_episode_impl()


@account_bp.route('/api/vault/episodes', methods=['GET'])
def list_vault_episodes():
    from patientlead import runtime

    return runtime.list_vault_episodes_impl()
