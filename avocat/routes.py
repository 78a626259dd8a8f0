import io
from datetime import datetime, timezone

import stripe
from flask import Blueprint, current_app, g, jsonify, request, send_file
from pymongo.errors import PyMongoError

from .auth import can_access, login_required
from .checkout import InvalidCart, create_checkout_session
from .extensions import limiter
from .ledger import PurchaseNotFound
from .queries import DocumentNotFound
from .services import get_services
from .storage import DownloadLinkExpired, InvalidDownloadLink
from .webhook import InvalidSignature

bp = Blueprint("main", __name__)


# --- Payment Routes ---
@bp.route('/create-checkout-session', methods=['POST'])
@limiter.limit("10 per minute")
def create_checkout():
    body = request.get_json(silent=True) or {}
    try:
        session = create_checkout_session(
            body.get("items"),
            body.get("customerEmail"),
            body.get("successUrl"),
            body.get("cancelUrl"),
            user_id=body.get("userId"),
            currency=current_app.config["CHECKOUT_CURRENCY"],
        )
    except InvalidCart as e:
        return jsonify({'success': False, 'error': str(e)}), 400
    except stripe.StripeError as e:
        current_app.logger.error(f"Stripe API error during checkout creation: {str(e)}")
        return jsonify({'success': False, 'error': 'Error creating checkout session'}), 502

    # The purchase itself is only recorded by the webhook once payment succeeds
    return jsonify({'success': True, 'url': session.url, 'sessionId': session.id})


@bp.route('/stripe/webhook', methods=['POST'])
def stripe_webhook():
    raw_body = request.get_data()
    signature = request.headers.get('Stripe-Signature')
    try:
        ack = get_services().webhooks.handle_incoming_event(raw_body, signature)
    except InvalidSignature:
        current_app.logger.warning("Rejected webhook with an invalid signature.")
        return jsonify({'error': 'Invalid signature'}), 400
    except Exception as e:
        current_app.logger.exception(f"Error processing webhook: {str(e)}")
        return jsonify({'error': 'Error processing webhook'}), 500
    return jsonify(ack.to_dict())


# --- Purchases and Documents ---
@bp.route('/purchases', methods=['GET'])
@login_required
def list_purchases():
    services = get_services()
    entries = services.ledger.find_by_user(g.user_id)
    return jsonify({'purchases': [services.queries.summarize(entry) for entry in entries]})


@bp.route('/purchases/<purchase_id>', methods=['GET'])
@login_required
def purchase_artifacts(purchase_id):
    try:
        listing = get_services().queries.list_artifacts(purchase_id)
    except PurchaseNotFound:
        return jsonify({'error': 'Purchase not found'}), 404
    if not can_access(listing['userId']):
        return jsonify({'error': 'Unauthorized access'}), 403
    return jsonify(listing)


@bp.route('/documents/<document_id>/download', methods=['GET'])
@login_required
def download_document(document_id):
    try:
        artifact = get_services().queries.download_artifact(document_id)
    except DocumentNotFound:
        current_app.logger.warning(f"Download requested for unknown document: {document_id}")
        return jsonify({'error': 'Document not found'}), 404
    if not can_access(artifact.owner_id):
        return jsonify({'error': 'Unauthorized access'}), 403

    current_app.logger.info(f"Serving document {document_id} to {g.user_id}")
    return send_file(
        io.BytesIO(artifact.data),
        mimetype=artifact.content_type,
        as_attachment=True,
        download_name=artifact.file_name,
    )


@bp.route('/files/<token>', methods=['GET'])
def signed_file(token):
    store = get_services().store
    try:
        storage_path = store.resolve_token(token)
    except DownloadLinkExpired:
        return jsonify({'error': 'Download link expired'}), 410
    except InvalidDownloadLink:
        return jsonify({'error': 'File not found'}), 404

    if not store.exists(storage_path):
        current_app.logger.warning(f"Signed link points at a missing file: {storage_path}")
        return jsonify({'error': 'File not found'}), 404

    metadata = store.metadata(storage_path)
    return send_file(
        io.BytesIO(store.read(storage_path)),
        mimetype=metadata.get('contentType', 'application/octet-stream'),
        as_attachment=True,
        download_name=metadata.get('fileName') or storage_path.rsplit('/', 1)[-1],
    )


# --- Health Check ---
@bp.route('/health', methods=['GET'])
def health_check():
    """Health check endpoint."""
    config = current_app.config
    errors = []
    component_status = {
        'database': 'ok',
        'stripe': 'ok' if config.get('STRIPE_SECRET_KEY') else 'not_configured',
        'stripe_webhook': 'ok' if config.get('STRIPE_WEBHOOK_SECRET') else 'not_configured',
        'openai': 'ok' if config.get('OPENAI_API_KEY') else 'not_configured',
    }

    try:
        get_services().mongo_client.admin.command('ping')
    except PyMongoError as e:
        component_status['database'] = 'error'
        errors.append(f"Database connection error: {str(e)}")
        current_app.logger.error("Health Check: database connection failed.")

    status = 'unhealthy' if errors else 'healthy'
    response = {
        'status': status,
        'timestamp': datetime.now(timezone.utc).isoformat(),
        'components': component_status,
    }
    if errors:
        response['errors'] = errors
    return jsonify(response), 503 if errors else 200
