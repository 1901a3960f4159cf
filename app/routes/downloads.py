import os
from flask import Blueprint, request, current_app, url_for, send_file
from flask_login import login_required, current_user

from app.services.grants import GrantKind, UsageContext
from app.services.grants.errors import GrantError, GrantResult
from app.utils import role_required
from app.utils.responses import api_response
from app.utils.validators import (
    get_json_payload, parse_int, optional_int, parse_pagination, parse_bool, parse_datetime
)

bp = Blueprint("downloads", __name__, url_prefix="/api/download")


def _grants():
    return current_app.extensions['grants']


def _request_context():
    return UsageContext(
        ip_address=request.remote_addr,
        user_agent=request.headers.get('User-Agent'),
    )


@bp.route("/generate-token", methods=["POST"])
@login_required
def generate_token():
    """Issue a download link for a product in one of the caller's completed orders.

    Admins may issue on behalf of another user with ``user_id``.
    """
    payload = get_json_payload()
    owner_id = current_user.id
    if current_user.is_admin and payload.get('user_id') is not None:
        owner_id = parse_int(payload['user_id'], 'user_id', minimum=1)

    config = current_app.config
    result = _grants().issue_download(
        owner_id=owner_id,
        resource_id=parse_int(payload.get('product_id'), 'product_id', minimum=1),
        purchase_id=parse_int(payload.get('order_id'), 'order_id', minimum=1),
        expiration_hours=optional_int(payload, 'expiration_hours'),
        max_uses=optional_int(payload, 'max_uses', maximum=config['DOWNLOAD_MAX_USES_CEILING']),
    )
    if result.ok:
        return api_response(result, download_url=url_for('downloads.redeem', token=result.data['token']))
    return api_response(result)


@bp.route("/my-downloads", methods=["GET"])
@login_required
def my_downloads():
    page, per_page = parse_pagination(request.args)
    result = _grants().list_for_owner(current_user.id, kind=GrantKind.DOWNLOAD,
                                      status=request.args.get('status'), page=page, per_page=per_page)
    return api_response(result)


@bp.route("/admin/all", methods=["GET"])
@login_required
@role_required('admin')
def admin_all():
    args = request.args
    page, per_page = parse_pagination(args)
    result = _grants().list_all(
        page=page,
        per_page=per_page,
        kind=GrantKind.DOWNLOAD,
        owner_id=parse_int(args['user_id'], 'user_id') if args.get('user_id') else None,
        resource_id=parse_int(args['product_id'], 'product_id') if args.get('product_id') else None,
        status=args.get('status'),
        is_active=parse_bool(args.get('is_active')),
        issued_from=parse_datetime(args.get('start_date'), 'start_date'),
        issued_to=parse_datetime(args.get('end_date'), 'end_date'),
    )
    return api_response(result)


@bp.route("/admin/revoke/<int:grant_id>", methods=["PATCH"])
@login_required
@role_required('admin')
def admin_revoke(grant_id):
    return api_response(_grants().revoke(grant_id, kind=GrantKind.DOWNLOAD))


@bp.route("/admin/regenerate/<int:grant_id>", methods=["PATCH"])
@login_required
@role_required('admin')
def admin_regenerate(grant_id):
    payload = get_json_payload()
    result = _grants().regenerate(grant_id, kind=GrantKind.DOWNLOAD,
                                  expiration_hours=optional_int(payload, 'expiration_hours'))
    if result.ok:
        return api_response(result, download_url=url_for('downloads.redeem', token=result.data['grant']['token']))
    return api_response(result)


@bp.route("/admin/cleanup", methods=["DELETE"])
@login_required
@role_required('admin')
def admin_cleanup():
    return api_response(_grants().sweep())


@bp.route("/file/<file_token>", methods=["GET"])
def serve_file(file_token):
    """Stream the file a short-lived file-gate capability points at."""
    try:
        path = current_app.extensions['file_gate'].resolve(file_token)
    except GrantError as e:
        return api_response(GrantResult.failure(e))
    return send_file(path, as_attachment=True, download_name=os.path.basename(path))


@bp.route("/<token>/status", methods=["GET"])
def status(token):
    """Non-mutating check whether the link can still be redeemed."""
    return api_response(_grants().check(token))


@bp.route("/<token>", methods=["GET"])
def redeem(token):
    """Redeem one use of a download link; returns a one-hour file URL."""
    result = _grants().redeem(token, _request_context())
    if result.ok:
        return api_response(result, download_url=url_for('downloads.serve_file', file_token=result.data['file_token']))
    return api_response(result)

