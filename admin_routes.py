from flask import Blueprint, request, jsonify, current_app
import logging

from certificate import DEFAULT_MAX_ATTEMPTS
from csv_import import import_certificates_csv
from errors import CertificateServiceError
from storage import get_storage

admin_bp = Blueprint('admin', __name__, url_prefix='/api/admin')

CSV_UPLOAD_FIELDS = ('csvFile', 'file')


@admin_bp.route('/import-csv', methods=['POST'])
def import_csv():
    upload = next((request.files[f] for f in CSV_UPLOAD_FIELDS if f in request.files), None)
    if upload is None or not upload.filename:
        return jsonify({'error': 'No file uploaded'}), 400
    try:
        data = upload.read()
        imported = import_certificates_csv(
            get_storage(), data,
            max_attempts=current_app.config.get('CERTIFICATE_ID_MAX_ATTEMPTS', DEFAULT_MAX_ATTEMPTS),
        )
    except UnicodeDecodeError:
        return jsonify({'error': 'CSV file must be UTF-8 encoded'}), 400
    except CertificateServiceError:
        raise
    except Exception:
        logging.exception(f'[ADMIN] import-csv failed for {upload.filename}')
        return jsonify({'error': 'Failed to import CSV'}), 500
    logging.info(f"[ADMIN] imported {upload.filename}: {imported['users']} users, "
                 f"{imported['certificates']} certificates, {len(imported['errors'])} errors")
    return jsonify({'success': True, 'imported': imported})


@admin_bp.route('/stats', methods=['GET'])
def stats():
    storage = get_storage()
    payload = {}
    payload.update(storage.get_user_stats())
    payload.update(storage.get_course_stats())
    return jsonify(payload)
