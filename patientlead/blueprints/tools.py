from flask import Blueprint

tools_bp = Blueprint('tools_api', __name__)


@tools_bp.route('/api/tools/<tool_id>/run', methods=['POST'])
def run_tool(tool_id):
    from patientlead import runtime

    return runtime.run_tool_impl(tool_id)


@tools_bp.route('/api/tool-access', methods=['GET'])
def check_tool_access():
    from patientlead import runtime

    return runtime.check_tool_access_impl()


@tools_bp.route('/api/plans', methods=['GET'])
def get_plans():
    from patientlead import runtime

    return runtime.get_plans_impl()
