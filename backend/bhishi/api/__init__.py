from flask import jsonify, current_app

from bhishi.errors import LedgerError, InvalidRequest


def register_error_handlers(flask_app):
    """Render typed ledger failures as ``{'error', 'code'}`` JSON."""

    @flask_app.errorhandler(LedgerError)
    def handle_ledger_error(exc):
        if exc.status >= 500:
            current_app.logger.error(f"[ledger] {exc.code}: {exc}")
        return jsonify({'error': str(exc), 'code': exc.code}), exc.status


def int_field(data, name, default=None, required=False):
    """Read an integer from a JSON body, tolerating numeric strings."""
    value = data.get(name, default)
    if value is None:
        if required:
            raise InvalidRequest(f'{name} is required')
        return None
    if isinstance(value, bool):
        raise InvalidRequest(f'{name} must be an integer')
    if isinstance(value, str) and value.strip().lstrip('-').isdigit():
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    raise InvalidRequest(f'{name} must be an integer')
