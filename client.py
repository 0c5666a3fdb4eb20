"""
Task Manager API client

前端 (瀏覽器) 那一層的 Python 版本:

- Session: 保存 token 和 user,對應瀏覽器 localStorage 的兩個 entry
- TaskManagerClient: 自動帶 Bearer token,收到 401 時清掉 session
- 表單驗證、任務篩選和統計
"""

from collections.abc import MutableMapping
from datetime import datetime, timezone
from marshmallow import Schema, fields, validate, ValidationError, EXCLUDE
import httpx
import json
import logging
import os

logger = logging.getLogger(__name__)

DEFAULT_API_URL = 'http://localhost:5000/api'

TOKEN_KEY = 'task_manager_token'
USER_KEY = 'task_manager_user'

# 登入 / 註冊畫面上的 401 是帳密錯誤,不是 session 失效
AUTH_PATHS = ('/auth/login', '/auth/register')

TASK_FILTERS = ('all', 'PENDING', 'COMPLETED')

# ============================================
# Storage (localStorage 的替代品)
# ============================================

class FileStorage(MutableMapping):
    """存在 JSON 檔案裡的 key/value storage,每次寫入都存檔"""

    def __init__(self, path):
        self.path = path
        self._data = {}
        if os.path.exists(path):
            with open(path, encoding='utf-8') as f:
                loaded = json.load(f)
            if isinstance(loaded, dict):
                self._data = loaded

    def _save(self):
        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(self.path, 'w', encoding='utf-8') as f:
            json.dump(self._data, f)

    def __getitem__(self, key):
        return self._data[key]

    def __setitem__(self, key, value):
        self._data[key] = value
        self._save()

    def __delitem__(self, key):
        del self._data[key]
        self._save()

    def __iter__(self):
        return iter(self._data)

    def __len__(self):
        return len(self._data)

# ============================================
# Session
# ============================================

class Session:
    """
    Client 端唯一的登入狀態

    只能透過 set() / clear() 改變,token 和 user 一定一起寫入、一起清掉
    """

    def __init__(self, storage=None):
        self.storage = storage if storage is not None else {}
        self.token = None
        self.user = None
        self._restore()

    def _restore(self):
        token = self.storage.get(TOKEN_KEY)
        raw_user = self.storage.get(USER_KEY)
        try:
            user = json.loads(raw_user) if raw_user else None
        except ValueError:
            user = None
        if not token or not isinstance(user, dict) or 'username' not in user:
            # token 和 user 少一個就當作沒登入
            self.clear()
            return
        self.token = token
        self.user = user

    @property
    def is_authenticated(self):
        return bool(self.token)

    def set(self, token, user):
        self.token = token
        self.user = {'id': user['id'], 'username': user['username']}
        self.storage[TOKEN_KEY] = token
        self.storage[USER_KEY] = json.dumps(self.user)

    def clear(self):
        self.token = None
        self.user = None
        self.storage.pop(TOKEN_KEY, None)
        self.storage.pop(USER_KEY, None)

# ============================================
# Client 端表單驗證
# ============================================

class LoginFormSchema(Schema):
    class Meta:
        unknown = EXCLUDE

    username = fields.Str(required=True, validate=validate.Length(min=1, error='Required'),
                          error_messages={'required': 'Required'})
    password = fields.Str(required=True, validate=validate.Length(min=1, error='Required'),
                          error_messages={'required': 'Required'})


class RegisterFormSchema(Schema):
    class Meta:
        unknown = EXCLUDE

    username = fields.Str(required=True, validate=validate.Length(min=1, error='Required'),
                          error_messages={'required': 'Required'})
    password = fields.Str(
        required=True,
        validate=validate.Length(min=6, error='Password must be at least 6 characters long'),
        error_messages={'required': 'Required'}
    )


class TaskFormSchema(Schema):
    class Meta:
        unknown = EXCLUDE

    title = fields.Str(required=True, validate=validate.Length(min=1, error='Required'),
                       error_messages={'required': 'Required'})
    description = fields.Str(allow_none=True)
    status = fields.Str(validate=validate.OneOf(('PENDING', 'COMPLETED')))


def validate_form(schema_class, data):
    """
    送出前先在 client 端驗證

    Returns:
        tuple: (is_valid, data_or_errors)
    """
    try:
        return True, schema_class().load(data)
    except ValidationError as err:
        return False, err.messages

# ============================================
# API Client
# ============================================

class ApiError(Exception):
    """API 回傳非 2xx,message 是 server 的 error 欄位"""

    def __init__(self, status_code, message):
        super().__init__(message)
        self.status_code = status_code
        self.message = message


class FormError(ApiError):
    """client 端驗證沒過,沒有送出請求"""

    def __init__(self, errors):
        field, messages = next(iter(errors.items()))
        super().__init__(None, f'{field}: {messages[0]}')
        self.errors = errors


class TaskManagerClient:
    """
    Task Manager REST API 的 client

    - 有 token 時自動加上 Authorization: Bearer <token>
    - 任何 401 (登入 / 註冊除外) 代表 session 失效,自動清掉 session
    """

    def __init__(self, base_url=None, session=None, transport=None, timeout=10.0):
        self.base_url = (base_url or os.getenv('TASK_MANAGER_API_URL', DEFAULT_API_URL)).rstrip('/')
        self.session = session if session is not None else Session()
        self.session_expired = False
        self._http = httpx.Client(
            base_url=self.base_url,
            transport=transport,
            timeout=timeout,
            event_hooks={
                'request': [self._attach_token],
                'response': [self._handle_unauthorized]
            }
        )

    def close(self):
        self._http.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()

    # ----- hooks -----

    def _attach_token(self, request):
        if self.session.token:
            request.headers['Authorization'] = f'Bearer {self.session.token}'

    def _handle_unauthorized(self, response):
        if response.status_code != 401:
            return
        if response.request.url.path.endswith(AUTH_PATHS):
            return
        # token 過期或無效
        logger.warning('Session rejected by server, clearing local session')
        self.session.clear()
        self.session_expired = True

    # ----- helpers -----

    def _request(self, method, path, fallback_message, **kwargs):
        self.session_expired = False
        response = self._http.request(method, path, **kwargs)
        if response.is_success:
            return response.json()

        try:
            payload = response.json()
        except ValueError:
            payload = {}
        message = payload.get('error') if isinstance(payload, dict) else None
        raise ApiError(response.status_code, message or fallback_message)

    # ----- auth -----

    def register(self, username, password):
        is_valid, result = validate_form(RegisterFormSchema, {'username': username, 'password': password})
        if not is_valid:
            raise FormError(result)

        data = self._request('POST', '/auth/register', 'Registration failed', json=result)
        self.session.set(data['token'], data['user'])
        return data['user']

    def login(self, username, password):
        is_valid, result = validate_form(LoginFormSchema, {'username': username, 'password': password})
        if not is_valid:
            raise FormError(result)

        data = self._request('POST', '/auth/login', 'Login failed', json=result)
        self.session.set(data['token'], data['user'])
        return data['user']

    def logout(self):
        self.session.clear()

    # ----- tasks -----

    def list_tasks(self):
        data = self._request('GET', '/tasks', 'Failed to fetch tasks')
        return data['tasks']

    def create_task(self, title, description=None, status=None):
        payload = {'title': title}
        if description is not None:
            payload['description'] = description
        if status is not None:
            payload['status'] = status

        is_valid, result = validate_form(TaskFormSchema, payload)
        if not is_valid:
            raise FormError(result)

        return self._request('POST', '/tasks', 'Failed to create task', json=payload)

    def update_task(self, task_id, **fields):
        """只送出有指定的欄位 (title / description / status)"""
        payload = {key: value for key, value in fields.items()
                   if key in ('title', 'description', 'status')}
        return self._request('PUT', f'/tasks/{task_id}', 'Failed to update task', json=payload)

    def delete_task(self, task_id):
        data = self._request('DELETE', f'/tasks/{task_id}', 'Failed to delete task')
        return data['message']

# ============================================
# 任務篩選和統計 (dashboard 用)
# ============================================

EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def _created_at(task):
    value = task.get('createdAt') or ''
    try:
        parsed = datetime.fromisoformat(value.replace('Z', '+00:00'))
    except ValueError:
        return EPOCH
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def filter_tasks(tasks, task_filter='all'):
    """
    依照狀態篩選

    all: PENDING 在前,COMPLETED 在後,同狀態最新的在前
    其他: 只留下該狀態,保持 server 回傳的順序
    """
    if task_filter not in TASK_FILTERS:
        raise ValueError(f'Unknown filter: {task_filter}')

    if task_filter != 'all':
        return [task for task in tasks if task['status'] == task_filter]

    newest_first = sorted(tasks, key=_created_at, reverse=True)
    return sorted(newest_first, key=lambda task: task['status'] != 'PENDING')


def task_stats(tasks):
    completed = sum(1 for task in tasks if task['status'] == 'COMPLETED')
    pending = sum(1 for task in tasks if task['status'] == 'PENDING')
    return {
        'total': len(tasks),
        'pending': pending,
        'completed': completed
    }
