from collections import Counter

from flask import Blueprint, current_app, g, jsonify, request

from .auth import admin_required
from .content import CompletionError
from .models import PurchaseStatus
from .notifications import MailerNotConfigured
from .services import get_services
from .users import UNKNOWN_USER_ID

bp = Blueprint("admin", __name__, url_prefix="/admin")

EMAIL_SYSTEM_PROMPT = (
    "Eres el equipo de atención al cliente de una plataforma de documentos legales para abogados y "
    "estudiantes de derecho. Redactas correos breves, cordiales y profesionales en español."
)


def _user_view(user, purchase_count=0):
    return {
        "uid": user["_id"],
        "email": user.get("email"),
        "displayName": user.get("displayName"),
        "role": user.get("role", "user"),
        "isActive": user.get("isActive", True),
        "purchases": purchase_count,
    }


@bp.route('/check-permissions', methods=['GET'])
@admin_required
def check_permissions():
    return jsonify({'authorized': True, 'uid': g.user_id})


@bp.route('/stats', methods=['GET'])
@admin_required
def stats():
    services = get_services()
    entries = services.ledger.find()
    users = services.users.list_users()

    by_status = Counter(entry.status.value for entry in entries)
    revenue = Counter()
    for entry in entries:
        if entry.status != PurchaseStatus.FAILED:
            revenue[entry.currency] += entry.total_amount

    return jsonify({
        'users': {
            'total': len(users),
            'active': sum(1 for user in users if user.get('isActive', True)),
        },
        'purchases': {
            'total': len(entries),
            'byStatus': {status.value: by_status.get(status.value, 0) for status in PurchaseStatus},
            'unassigned': sum(1 for entry in entries if entry.user_id == UNKNOWN_USER_ID),
        },
        'documents': {
            'generated': sum(entry.documents_generated for entry in entries),
            'failed': sum(entry.documents_failed for entry in entries),
        },
        'revenue': dict(revenue),
    })


@bp.route('/users', methods=['GET'])
@admin_required
def list_users():
    services = get_services()
    counts = Counter(entry.user_id for entry in services.ledger.find())
    return jsonify({'users': [_user_view(user, counts.get(user["_id"], 0)) for user in services.users.list_users()]})


@bp.route('/users/<uid>/purchases', methods=['GET'])
@admin_required
def user_purchases(uid):
    services = get_services()
    entries = services.ledger.find_by_user(uid)
    return jsonify({
        'uid': uid,
        'purchases': [services.queries.list_artifacts(entry.id) for entry in entries],
    })


@bp.route('/purchases/<purchase_id>/reprocess', methods=['POST'])
@admin_required
def reprocess_purchase(purchase_id):
    services = get_services()
    entry = services.ledger.get(purchase_id)
    if entry is None:
        return jsonify({'error': 'Purchase not found'}), 404

    current_app.logger.info(f"Admin {g.user_id} triggered reprocessing of purchase {purchase_id}")
    result = services.sweep.reprocess_purchase(entry)
    return jsonify({
        'purchaseId': purchase_id,
        'status': result.status.value,
        'documentsGenerated': result.documents_generated,
        'documentsFailed': result.documents_failed,
    })


def _split_subject(text, default_subject):
    lines = text.strip().splitlines()
    if lines and lines[0].lower().startswith(("asunto:", "subject:")):
        return lines[0].split(":", 1)[1].strip(), "\n".join(lines[1:]).strip()
    return default_subject, text.strip()


@bp.route('/generate-email', methods=['POST'])
@admin_required
def generate_email():
    body = request.get_json(silent=True) or {}
    purpose = (body.get('purpose') or '').strip()
    if not purpose:
        return jsonify({'error': 'purpose is required'}), 400

    services = get_services()
    user = services.users.get(body.get('userId')) if body.get('userId') else None
    recipient = (user or {}).get('displayName') or (user or {}).get('email') or 'cliente'
    documents = []
    if user is not None:
        for entry in services.ledger.find_by_user(user['_id']):
            documents.extend(item.name for item in entry.items)

    prompt = (
        f"Redacta un correo para {recipient}.\n"
        f"Motivo: {purpose}\n"
        f"Documentos adquiridos: {', '.join(documents) if documents else 'ninguno'}\n"
        f"Instrucciones adicionales: {body.get('instructions') or 'ninguna'}\n\n"
        "Empieza con una línea 'Asunto: ...' y después el cuerpo del correo."
    )
    try:
        text = services.completions.complete(prompt, system_prompt=EMAIL_SYSTEM_PROMPT, temperature=0.5, max_tokens=800)
    except CompletionError as e:
        current_app.logger.error(f"Email draft generation failed: {str(e)}")
        return jsonify({'error': 'Could not generate email'}), 502

    subject, email_body = _split_subject(text, f"Avocat: {purpose}")
    return jsonify({'to': (user or {}).get('email'), 'subject': subject, 'body': email_body})


@bp.route('/send-email', methods=['POST'])
@admin_required
def send_email():
    body = request.get_json(silent=True) or {}
    missing = [key for key in ('to', 'subject', 'body') if not body.get(key)]
    if missing:
        return jsonify({'error': f"Missing fields: {', '.join(missing)}"}), 400
    try:
        get_services().mailer.send(body['to'], body['subject'], body['body'], html=body.get('html'))
    except MailerNotConfigured as e:
        return jsonify({'error': str(e)}), 503
    except OSError as e:
        current_app.logger.error(f"Failed to send email to {body['to']}: {str(e)}")
        return jsonify({'error': 'Failed to send email'}), 502
    return jsonify({'sent': True})
