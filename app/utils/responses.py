from flask import jsonify


def api_response(result, **extra):
    """JSON envelope for a GrantResult: ``{success, message, data, error?, meta?}``."""
    body = result.to_dict()
    if extra and body['data'] is not None:
        body['data'].update(extra)
    return jsonify(body), result.http_status


def api_error(message, status=400, kind='invalid_input'):
    return jsonify({'success': False, 'message': str(message), 'data': None, 'error': kind}), status
