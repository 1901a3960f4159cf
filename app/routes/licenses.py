from flask import Blueprint, request, current_app
from flask_login import login_required, current_user

from app.services.grants import GrantKind, GrantStatus, LicenseType, UsageContext
from app.utils import role_required
from app.utils.messages import LICENSE_NOT_FOUND
from app.utils.responses import api_response, api_error
from app.utils.validators import (
    PayloadError, get_json_payload, require_str, optional_str, parse_int, optional_int,
    parse_pagination, parse_bool, parse_datetime, is_valid_device_id
)

bp = Blueprint("licenses", __name__, url_prefix="/api/licenses")


def _grants():
    return current_app.extensions['grants']


def _device_id(payload):
    device_id = require_str(payload, 'device_id', max_length=128)
    if not is_valid_device_id(device_id):
        raise PayloadError('device_id contains invalid characters')
    return device_id


def _usage_context(payload):
    return UsageContext(
        ip_address=request.remote_addr,
        user_agent=request.headers.get('User-Agent'),
        device_name=optional_str(payload, 'device_name', max_length=120),
    )


def _license_type(value):
    if value is not None and value not in LicenseType.ALL:
        raise PayloadError(f"license_type must be one of: {', '.join(LicenseType.ALL)}")
    return value


# Public / customer endpoints

@bp.route("/validate", methods=["POST"])
def validate():
    """Check that a license is valid on a device. Public: the key is the credential."""
    payload = get_json_payload()
    return api_response(_grants().validate(require_str(payload, 'license_key'), _device_id(payload)))


@bp.route("/activate", methods=["POST"])
@login_required
def activate():
    payload = get_json_payload()
    result = _grants().activate(require_str(payload, 'license_key'), _device_id(payload), _usage_context(payload))
    return api_response(result)


@bp.route("/deactivate", methods=["POST"])
@login_required
def deactivate():
    payload = get_json_payload()
    result = _grants().deactivate(require_str(payload, 'license_key'), _device_id(payload), _usage_context(payload))
    return api_response(result)


@bp.route("/my-licenses", methods=["GET"])
@login_required
def my_licenses():
    page, per_page = parse_pagination(request.args)
    result = _grants().list_for_owner(current_user.id, kind=GrantKind.LICENSE,
                                      status=request.args.get('status'), page=page, per_page=per_page)
    return api_response(result)


@bp.route("/key/<license_key>", methods=["GET"])
@login_required
def get_by_key(license_key):
    result = _grants().get_by_token(license_key, kind=GrantKind.LICENSE)
    if result.ok and not current_user.is_admin and result.data['grant']['owner_id'] != current_user.id:
        # don't reveal keys owned by someone else
        return api_error(LICENSE_NOT_FOUND, 404, kind='not_found')
    return api_response(result)


# Admin endpoints

@bp.route("/", methods=["POST"])
@login_required
@role_required('admin')
def create_license():
    payload = get_json_payload()
    metadata = payload.get('metadata')
    if metadata is not None and not isinstance(metadata, dict):
        raise PayloadError('metadata must be an object')

    result = _grants().issue_license(
        owner_id=parse_int(payload.get('user_id'), 'user_id', minimum=1),
        resource_id=parse_int(payload.get('product_id'), 'product_id', minimum=1),
        purchase_id=parse_int(payload.get('order_id'), 'order_id', minimum=1),
        license_type=_license_type(payload.get('license_type')),
        max_uses=optional_int(payload, 'max_activations', minimum=1),
        expires_at=parse_datetime(payload.get('expires_at'), 'expires_at'),
        manual_key=optional_str(payload, 'license_key', max_length=128),
        notes=optional_str(payload, 'notes', max_length=2000),
        metadata=metadata,
    )
    return api_response(result)


@bp.route("/", methods=["GET"])
@login_required
@role_required('admin')
def list_licenses():
    args = request.args
    page, per_page = parse_pagination(args)
    result = _grants().list_all(
        page=page,
        per_page=per_page,
        kind=GrantKind.LICENSE,
        owner_id=parse_int(args['user_id'], 'user_id') if args.get('user_id') else None,
        resource_id=parse_int(args['product_id'], 'product_id') if args.get('product_id') else None,
        status=args.get('status'),
        is_active=parse_bool(args.get('is_active')),
        issued_from=parse_datetime(args.get('start_date'), 'start_date'),
        issued_to=parse_datetime(args.get('end_date'), 'end_date'),
    )
    return api_response(result)


@bp.route("/stats", methods=["GET"])
@login_required
@role_required('admin')
def stats():
    args = request.args
    result = _grants().stats(
        kind=GrantKind.LICENSE,
        issued_from=parse_datetime(args.get('start_date'), 'start_date'),
        issued_to=parse_datetime(args.get('end_date'), 'end_date'),
    )
    return api_response(result)


@bp.route("/<int:license_id>", methods=["GET"])
@login_required
@role_required('admin')
def get_license(license_id):
    return api_response(_grants().get(license_id, kind=GrantKind.LICENSE))


@bp.route("/<int:license_id>", methods=["PUT"])
@login_required
@role_required('admin')
def update_license(license_id):
    payload = get_json_payload()
    changes = {}
    if 'status' in payload:
        if payload['status'] not in GrantStatus.ALL:
            raise PayloadError(f"status must be one of: {', '.join(GrantStatus.ALL)}")
        changes['status'] = payload['status']
    if 'max_activations' in payload:
        changes['max_uses'] = optional_int(payload, 'max_activations', minimum=1)
    if 'expires_at' in payload:
        changes['expires_at'] = parse_datetime(payload['expires_at'], 'expires_at')
    if 'notes' in payload:
        changes['notes'] = optional_str(payload, 'notes', max_length=2000)
    if 'metadata' in payload:
        if payload['metadata'] is not None and not isinstance(payload['metadata'], dict):
            raise PayloadError('metadata must be an object')
        changes['metadata'] = payload['metadata']
    if not changes:
        raise PayloadError('Nothing to update')
    return api_response(_grants().update(license_id, changes, kind=GrantKind.LICENSE))


@bp.route("/<int:license_id>", methods=["DELETE"])
@login_required
@role_required('admin')
def delete_license(license_id):
    return api_response(_grants().delete(license_id, kind=GrantKind.LICENSE))


@bp.route("/<int:license_id>/extend", methods=["PATCH"])
@login_required
@role_required('admin')
def extend_license(license_id):
    payload = get_json_payload()
    days = parse_int(payload.get('days'), 'days')
    return api_response(_grants().extend(license_id, days))


@bp.route("/<int:license_id>/revoke", methods=["PATCH"])
@login_required
@role_required('admin')
def revoke_license(license_id):
    return api_response(_grants().revoke(license_id, kind=GrantKind.LICENSE))


@bp.route("/<int:license_id>/regenerate", methods=["PATCH"])
@login_required
@role_required('admin')
def regenerate_license(license_id):
    payload = get_json_payload()
    result = _grants().regenerate(license_id, kind=GrantKind.LICENSE,
                                  expiration_days=optional_int(payload, 'expiration_days'))
    return api_response(result)
