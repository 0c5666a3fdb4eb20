from app import create_app
from config import get_config

# gunicorn wsgi:app
config_class = get_config()
config_class.validate()

app = create_app(config_class)
