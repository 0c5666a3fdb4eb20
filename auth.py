from flask import Blueprint, request, jsonify, current_app
from marshmallow import Schema, fields, validates_schema, ValidationError, EXCLUDE
from sqlalchemy.exc import IntegrityError
from models import db, User
from errors import ApiError, RequestValidationError, ConflictError, InvalidCredentialsError
from tokens import issue_token
import logging

auth_bp = Blueprint('auth', __name__)
logger = logging.getLogger(__name__)

CREDENTIALS_REQUIRED = 'Username and password are required'

# ============================================
# Input Validation Schemas (用 marshmallow)
# ============================================

class LoginSchema(Schema):
    """登入輸入驗證"""

    class Meta:
        unknown = EXCLUDE

    username = fields.Str(load_default=None, allow_none=True,
                          error_messages={'invalid': CREDENTIALS_REQUIRED})
    password = fields.Str(load_default=None, allow_none=True,
                          error_messages={'invalid': CREDENTIALS_REQUIRED})

    @validates_schema
    def validate_credentials(self, data, **kwargs):
        if not data.get('username') or not data.get('password'):
            raise ValidationError(CREDENTIALS_REQUIRED)


class RegisterSchema(Schema):
    """
    註冊輸入驗證

    檢查順序:
    1. username / password 都要有值
    2. password 長度至少 PASSWORD_MIN_LENGTH (預設 6)
    """

    class Meta:
        unknown = EXCLUDE

    username = fields.Str(load_default=None, allow_none=True,
                          error_messages={'invalid': CREDENTIALS_REQUIRED})
    password = fields.Str(load_default=None, allow_none=True,
                          error_messages={'invalid': CREDENTIALS_REQUIRED})

    @validates_schema
    def validate_credentials(self, data, **kwargs):
        if not data.get('username') or not data.get('password'):
            raise ValidationError(CREDENTIALS_REQUIRED)

        min_length = current_app.config.get('PASSWORD_MIN_LENGTH', 6)
        if len(data['password']) < min_length:
            raise ValidationError(f'Password must be at least {min_length} characters long')

# ============================================
# Helper Functions
# ============================================

def get_bcrypt():
    """從 Flask app extensions 取得 bcrypt 實例 (不用 global variable)"""
    return current_app.extensions['bcrypt']


def get_json_body():
    """取得 JSON body,不是 JSON object 時當作空的"""
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def first_error_message(messages):
    """從 marshmallow 的錯誤訊息取出第一個 (schema 層級的優先)"""
    if isinstance(messages, dict):
        if '_schema' in messages:
            return first_error_message(messages['_schema'])
        for value in messages.values():
            return first_error_message(value)
    if isinstance(messages, list) and messages:
        return first_error_message(messages[0])
    return str(messages)


def validate_request_data(schema_class, data):
    """
    統一的輸入驗證函數

    Returns:
        dict: 驗證後的資料

    Raises:
        RequestValidationError: 驗證失敗,訊息是第一個錯誤
    """
    schema = schema_class()
    try:
        return schema.load(data)
    except ValidationError as err:
        raise RequestValidationError(first_error_message(err.messages))


def user_payload(user, token):
    return {
        'token': token,
        'user': {
            'id': user.id,
            'username': user.username
        }
    }

# ============================================
# 註冊 API
# ============================================

@auth_bp.route('/register', methods=['POST'])
def register():
    """
    使用者註冊

    成功時直接簽發 token,前端不用再登入一次
    """
    result = validate_request_data(RegisterSchema, get_json_body())
    username = result['username']

    # 檢查 username 是否已存在 (大小寫有分)
    if User.query.filter_by(username=username).first():
        raise ConflictError()

    hashed_password = get_bcrypt().generate_password_hash(result['password']).decode('utf-8')

    user = User(
        username=username,
        password_hash=hashed_password
    )

    try:
        db.session.add(user)
        db.session.commit()
    except IntegrityError:
        # 同時有另一個請求註冊了同一個 username,交給 unique constraint 擋下
        db.session.rollback()
        logger.warning(f"Duplicate username on commit: {username}")
        raise ConflictError()
    except Exception as e:
        db.session.rollback()
        # 不要把 exception 細節洩漏給前端
        logger.error(f"Registration error for {username}: {str(e)}", exc_info=True)
        raise ApiError()

    logger.info(f"New user registered: {user.username}")

    token = issue_token({'userId': user.id, 'username': user.username})
    return jsonify(user_payload(user, token)), 201

# ============================================
# 登入 API
# ============================================

@auth_bp.route('/login', methods=['POST'])
def login():
    """
    使用者登入

    不區分 username 錯還是 password 錯,避免帳號枚舉攻擊
    """
    result = validate_request_data(LoginSchema, get_json_body())

    user = User.query.filter_by(username=result['username']).first()

    if not user or not get_bcrypt().check_password_hash(user.password_hash, result['password']):
        logger.warning(f"Failed login attempt for username: {result['username']}")
        raise InvalidCredentialsError()

    token = issue_token({'userId': user.id, 'username': user.username})

    logger.info(f"User logged in: {user.username}")

    return jsonify(user_payload(user, token)), 200
