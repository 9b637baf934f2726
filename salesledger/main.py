from flask import Flask, request, jsonify
from flask_cors import CORS
import logging

from . import config
from .errors import SalesLedgerError
from .fees_routes import fees_bp
from .reports_routes import reports_bp
from .sales_import_routes import sales_import_bp
from .utils.auth_decorator import authenticate_request

logging.basicConfig(level=config.LOG_LEVEL, format='%(asctime)s %(levelname)s %(name)s %(message)s')
logger = logging.getLogger(__name__)

app = Flask(__name__)
app.config['MAX_CONTENT_LENGTH'] = config.MAX_UPLOAD_BYTES

CORS(app,
    resources={
        r"/api/*": {
            "origins": config.CORS_ORIGINS,
            "methods": ["GET", "POST", "OPTIONS"],
            "allow_headers": ["Content-Type", "Authorization", "X-Requested-With", "Accept"],
            "expose_headers": ["Content-Type", "Authorization"],
            "supports_credentials": True,
            "max_age": 3600
        }
    }
)


# Global auth middleware: every /api request carries a JWT
@app.before_request
def auth_before_request():
    if request.method == 'OPTIONS' or not request.path.startswith('/api/'):
        return None
    return authenticate_request()


@app.errorhandler(SalesLedgerError)
def handle_sales_ledger_error(e):
    return jsonify(e.to_dict()), e.status_code


@app.errorhandler(413)
def handle_too_large(e):
    return jsonify({'error': 'Uploaded file is too large'}), 413


app.register_blueprint(sales_import_bp)
app.register_blueprint(reports_bp)
app.register_blueprint(fees_bp)


if __name__ == '__main__':
    app.run(debug=True)
