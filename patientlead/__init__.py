from .config import load_config
from .extensions import init_extensions
from .logging_config import configure_logging


def create_app():
    """App factory entrypoint.

    Routes and shared collaborators live in ``patientlead.runtime``; the
    factory validates configuration and the tier catalog before handing it out.
    """
    config = load_config()
    configure_logging(config.log_level)

    from .services.tool_catalog import validate_catalog

    validate_catalog()

    from .runtime import app

    init_extensions(app, config)
    return app
