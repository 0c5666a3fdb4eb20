from flask import Flask, request, jsonify
from flask_cors import CORS
from flask_jwt_extended import JWTManager
from flask_bcrypt import Bcrypt
from werkzeug.exceptions import HTTPException
from config import get_config
from models import db, utcnow, isoformat
from errors import ApiError
from sqlalchemy import text
import logging
from logging.handlers import RotatingFileHandler
import os

# ============================================
# Logging 設定
# ============================================

def setup_logging(app):
    """
    設定 logging 系統

    1. 分開 info 和 error logs
    2. 使用 RotatingFileHandler 避免 log 檔案過大
    3. 設定統一的 log format
    """
    log_dir = app.config.get('LOG_DIR', 'logs')
    os.makedirs(log_dir, exist_ok=True)

    formatter = logging.Formatter(
        '[%(asctime)s] %(levelname)s in %(module)s: %(message)s'
    )

    # Info log handler (記錄一般資訊)
    info_handler = RotatingFileHandler(
        os.path.join(log_dir, 'app.log'),
        maxBytes=10240000,  # 10MB
        backupCount=10
    )
    info_handler.setLevel(logging.INFO)
    info_handler.setFormatter(formatter)

    # Error log handler (只記錄錯誤)
    error_handler = RotatingFileHandler(
        os.path.join(log_dir, 'error.log'),
        maxBytes=10240000,  # 10MB
        backupCount=10
    )
    error_handler.setLevel(logging.ERROR)
    error_handler.setFormatter(formatter)

    level = getattr(logging, str(app.config.get('LOG_LEVEL', 'INFO')).upper(), logging.INFO)

    # 掛在 root logger 上,app.logger 和各個模組的 logger 都會 propagate 過來
    # 同一個檔案只掛一次,重複呼叫 create_app 不會重複寫
    root = logging.getLogger()
    attached = {getattr(h, 'baseFilename', None) for h in root.handlers}
    for handler in (info_handler, error_handler):
        if handler.baseFilename in attached:
            handler.close()
        else:
            root.addHandler(handler)
    root.setLevel(level)
    app.logger.setLevel(level)

    app.logger.info('Application startup')

# ============================================
# 全域錯誤處理
# ============================================

def register_error_handlers(app):
    @app.errorhandler(ApiError)
    def handle_api_error(error):
        """預期內的錯誤 (驗證、權限、找不到...)"""
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(404)
    def not_found(error):
        return jsonify({'error': 'Not found'}), 404

    @app.errorhandler(405)
    def method_not_allowed(error):
        return jsonify({'error': 'Method not allowed'}), 405

    @app.errorhandler(HTTPException)
    def handle_http_exception(error):
        return jsonify({'error': error.description}), error.code

    @app.errorhandler(Exception)
    def handle_unexpected_error(error):
        """
        處理所有未預期的錯誤

        1. 不洩漏錯誤細節給前端
        2. 記錄完整的 stack trace 到 log
        3. rollback transaction
        """
        db.session.rollback()

        app.logger.error(f"Unexpected error: {str(error)}", exc_info=True)

        return jsonify({'error': 'Internal server error'}), 500

# ============================================
# 建立 App
# ============================================

def create_app(config_class=None):
    app = Flask(__name__)
    app.config.from_object(config_class or get_config())

    # 不要用 '*',只允許設定的來源
    CORS(app,
         origins=app.config['CORS_ORIGINS'],
         methods=['GET', 'POST', 'PUT', 'DELETE', 'OPTIONS'],
         allow_headers=['Content-Type', 'Authorization'])

    # 擴展初始化
    db.init_app(app)
    JWTManager(app)
    app.extensions['bcrypt'] = Bcrypt(app)

    if not app.debug and not app.testing:
        setup_logging(app)

    with app.app_context():
        db.create_all()

    # 註冊 Blueprints
    from auth import auth_bp
    app.register_blueprint(auth_bp, url_prefix='/api/auth')

    from tasks import tasks_bp
    app.register_blueprint(tasks_bp, url_prefix='/api/tasks')

    register_error_handlers(app)

    # ============================================
    # Request/Response Logging
    # ============================================

    @app.before_request
    def log_request():
        if not app.debug:
            app.logger.info(f"Request: {request.method} {request.path} from {request.remote_addr}")

    @app.after_request
    def log_response(response):
        if not app.debug:
            app.logger.info(f"Response: {response.status_code} for {request.method} {request.path}")

        # 加上 security headers
        response.headers['X-Content-Type-Options'] = 'nosniff'
        response.headers['X-Frame-Options'] = 'DENY'

        return response

    # ============================================
    # Health Check Endpoint
    # ============================================

    @app.route('/health', methods=['GET'])
    def health_check():
        """健康檢查端點,給 load balancer 或監控系統用"""
        try:
            db.session.execute(text('SELECT 1'))

            return jsonify({
                'status': 'healthy',
                'database': 'connected',
                'timestamp': isoformat(utcnow())
            }), 200
        except Exception as e:
            db.session.rollback()
            app.logger.error(f"Health check failed: {str(e)}")
            return jsonify({
                'status': 'unhealthy',
                'database': 'disconnected',
                'error': 'Database connection failed'
            }), 503

    @app.route('/')
    def home():
        return jsonify({
            'message': 'Task Management API is running!',
            'version': app.config['API_VERSION']
        })

    return app

# ============================================
# 啟動應用
# ============================================

if __name__ == '__main__':
    # 在 production 環境不要用 Flask 內建的 server
    # 應該用 gunicorn: gunicorn wsgi:app
    config_class = get_config()
    config_class.validate()

    app = create_app(config_class)
    app.run(
        debug=app.config['DEBUG'],
        port=app.config['PORT'],
        host='0.0.0.0'  # 允許外部訪問
    )
