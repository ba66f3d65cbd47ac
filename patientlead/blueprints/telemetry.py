from flask import Blueprint

telemetry_bp = Blueprint('telemetry_api', __name__)


@telemetry_bp.route('/api/copilot/ingest', methods=['POST'])
def copilot_ingest():
    from patientlead import runtime

    return runtime.copilot_ingest_impl()
