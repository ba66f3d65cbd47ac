import sentry_sdk
from sentry_sdk.integrations.flask import FlaskIntegration


def init_extensions(app, config) -> None:
    """Attach Sentry and record factory state on the Flask app."""
    if app is None or not hasattr(app, 'extensions'):
        return
    state = app.extensions.setdefault('patientlead', {})
    if state.get('factory_initialized'):
        return
    sentry_enabled = False
    if config is not None and config.sentry_dsn:
        sentry_sdk.init(
            dsn=config.sentry_dsn,
            integrations=[FlaskIntegration()],
            traces_sample_rate=config.sentry_traces_sample_rate,
            send_default_pii=False,
            environment=config.sentry_environment,
            release=config.sentry_release,
        )
        sentry_enabled = True
    state['sentry_enabled'] = sentry_enabled
    state['factory_initialized'] = True
